"""
Request Coalescer

Collapses concurrent calls for the same key into a single execution, so a
burst of cache misses for one logical query produces exactly one upstream
fetch (cache stampede protection).

How it works:
    - An in-flight registry maps key -> asyncio.Task, guarded by a lock
    - The first caller for a key starts the compute task and registers it
    - Callers arriving while it runs await the same task instead of
      starting new work; they get the same value (or the same exception)
    - The task unregisters itself when it finishes

A started compute task always runs to completion: callers await it through
asyncio.shield(), so cancelling one waiter (even the one that started it)
never cancels the fetch the others are waiting on.

The compute function must re-check the cache itself; the coalescer only
guarantees at-most-one execution per key, not freshness.

Keys share the cache key space but are namespaced per operation kind
("history:", "latest:", "snapshot:", ...).
"""

import asyncio
import threading
from typing import Any, Awaitable, Callable, Dict, Tuple

from core.logging import get_logger


class Coalescer:
    """
    Keyed single-flight execution for coroutines.

    Example:
        >>> coalescer = Coalescer()
        >>> value, shared = await coalescer.do("history:bitcoin:365:daily", fetch)
    """

    def __init__(self) -> None:
        self._calls: Dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()
        self._logger = get_logger(__name__)

    async def do(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Tuple[Any, bool]:
        """
        Run `compute` unless a call for `key` is already in flight.

        Args:
            key: Namespaced coalescing key
            compute: Zero-argument coroutine function producing the value

        Returns:
            (value, shared) where shared is True if this caller joined a
            call started by someone else

        Raises:
            Whatever `compute` raised, to every caller of that flight
        """
        with self._lock:
            task = self._calls.get(key)
            shared = task is not None
            if task is None:
                task = asyncio.ensure_future(compute())
                self._calls[key] = task
                task.add_done_callback(lambda t, k=key: self._forget(k, t))

        if shared:
            self._logger.debug(f"Joined in-flight call for '{key}'")

        value = await asyncio.shield(task)
        return value, shared

    def _forget(self, key: str, task: asyncio.Task) -> None:
        with self._lock:
            if self._calls.get(key) is task:
                del self._calls[key]

        # Mark the outcome as retrieved even if every waiter was cancelled
        if not task.cancelled():
            task.exception()

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._calls

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)
