"""
In-Memory TTL Cache

One instance holds one category of data (top listing, latest prices,
history series, ...), so TTL is a property of the category rather than of
individual requests. Storage and expiry are delegated to cachetools.TTLCache.

Semantics:
    - an entry whose age has reached the TTL is treated exactly like a miss
    - set() restarts the entry's TTL and overwrites
    - sweep() drops expired entries; it is driven by the background
      scheduler independent of request traffic
    - values are deep-copied on the way in and out, so neither the caller
      that stored a value nor the callers that read it can mutate cached state

cachetools caches are not thread-safe, so every access goes through a lock
held only for the in-memory operation.

Usage:
    cache = TTLCache("history", ttl=24 * 3600)
    cache.set("bitcoin:365:daily", history)
    value, found = cache.get("bitcoin:365:daily")
"""

import threading
import time
from copy import deepcopy
from typing import Callable, Generic, Optional, Tuple, TypeVar

import cachetools

from core.logging import get_logger

T = TypeVar("T")

DEFAULT_MAXSIZE = 10_000


class TTLCache(Generic[T]):
    """
    Thread-safe TTL cache for one data category.

    Args:
        name: Category name used in logs
        ttl: Max entry age in seconds
        clock: Monotonic clock (injectable for tests)
        maxsize: Entry bound; past it the least recently used entry is evicted
    """

    def __init__(
        self,
        name: str,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = DEFAULT_MAXSIZE,
    ) -> None:
        if ttl <= 0:
            raise ValueError(f"TTL for cache '{name}' must be positive, got {ttl}")

        self.name = name
        self.ttl = ttl
        self._data: cachetools.TTLCache = cachetools.TTLCache(maxsize=maxsize, ttl=ttl, timer=clock)
        self._lock = threading.RLock()
        self._logger = get_logger(__name__)

    def get(self, key: str) -> Tuple[Optional[T], bool]:
        """
        Look up a key.

        Returns:
            (copy of value, True) on a fresh hit, (None, False) otherwise
        """
        with self._lock:
            try:
                value = self._data[key]
            except KeyError:
                return None, False
            return deepcopy(value), True

    def set(self, key: str, value: T) -> None:
        """Store a copy of `value` under `key`, restarting its TTL."""
        snapshot = deepcopy(value)
        with self._lock:
            self._data[key] = snapshot

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def sweep(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = len(self._data.expire())

        if removed:
            self._logger.debug(f"Swept {removed} expired entries from '{self.name}' cache")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        # Freshness check only; the value is not copied
        with self._lock:
            return key in self._data
