"""
Background Scheduler

Runs the periodic maintenance work of the caching layer:

    cache_sweep              drop expired cache entries          every 10m
    top_prices_refresh       refresh CoinGecko top prices        every 5m
    cmc_top_prices_refresh   refresh CoinMarketCap top prices    every 5m  (CMC key only)
    coins_snapshot_refresh   refresh the top coins snapshot      every 2h
    fx_rates_refresh         refresh FX rates                    every 24h
    cmc_mapping              build the CMC mapping if absent     at start, every 24h (CMC key only)
    history_prewarm          warm canonical history series       after 30s, every 24h

Building blocks:
    - RepeatingJob: one asyncio task per job with explicit start/stop; the
      loop sleeps on a stop event so stop() takes effect immediately
    - RateLimiter: a shared gate granting one permit per interval
    - run_worker_pool: fixed-size worker pool over a queue of items, with a
      freshness check before the rate limiter and per-item failure capture

A job's exception is logged and never kills its loop.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from core.config import Settings, settings
from core.errors import PartialFailureError
from core.logging import get_logger

logger = get_logger(__name__)


# ============================================
# Rate Limiter
# ============================================

class RateLimiter:
    """
    Shared gate granting at most one permit per `interval` seconds.

    The first permit is granted immediately; every later one waits until
    `interval` seconds after the previous grant. All callers share the gate,
    so N workers together never exceed the rate.

    Example:
        >>> limiter = RateLimiter(2.0)   # ~30 requests/min
        >>> await limiter.acquire()
    """

    def __init__(self, interval: float) -> None:
        if interval < 0:
            raise ValueError("rate limiter interval must not be negative")
        self.interval = interval
        self._lock = asyncio.Lock()
        self._next_at: Optional[float] = None

    async def acquire(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            if self._next_at is not None and now < self._next_at:
                await asyncio.sleep(self._next_at - now)
                now = loop.time()
            self._next_at = now + self.interval


# ============================================
# Worker Pool
# ============================================

@dataclass
class PoolReport:
    """
    Outcome of one worker pool sweep.

    Attributes:
        total: Number of items queued
        completed: Items whose handler succeeded
        skipped: Items reported fresh by the freshness check
        failures: Item label -> error message
    """

    total: int = 0
    completed: int = 0
    skipped: int = 0
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.completed + self.skipped + len(self.failures)


async def run_worker_pool(
    items: Sequence[Any],
    handler: Callable[[Any], Awaitable[Any]],
    worker_count: int,
    limiter: Optional[RateLimiter] = None,
    should_skip: Optional[Callable[[Any], bool]] = None,
    stop_event: Optional[asyncio.Event] = None,
    label: Callable[[Any], str] = str,
) -> PoolReport:
    """
    Process `items` with `worker_count` concurrent workers.

    Each worker takes the next item, skips it if `should_skip(item)` says it
    is still fresh, otherwise waits for a limiter permit and awaits
    `handler(item)`. Failures are recorded in the report and never retried
    within the sweep. Setting `stop_event` makes workers exit before taking
    their next item.

    Returns:
        PoolReport with counts and per-item failures
    """
    queue: asyncio.Queue = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)

    report = PoolReport(total=len(items))

    async def worker(worker_id: int) -> None:
        while not (stop_event is not None and stop_event.is_set()):
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            if should_skip is not None and should_skip(item):
                report.skipped += 1
                continue

            if limiter is not None:
                await limiter.acquire()

            try:
                await handler(item)
                report.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Worker {worker_id} failed on {label(item)}: {e}")
                report.failures[label(item)] = str(e)

    workers = [asyncio.create_task(worker(i), name=f"pool-worker-{i}") for i in range(max(1, worker_count))]
    try:
        await asyncio.gather(*workers)
    finally:
        for task in workers:
            if not task.done():
                task.cancel()

    return report


# ============================================
# Repeating Job
# ============================================

class RepeatingJob:
    """
    Runs an async function every `interval` seconds after `initial_delay`.

    Attributes:
        runs: Completed runs (successful or not)
        failures: Runs that raised
        last_error: Exception of the last failed run
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Any],
        interval: float,
        initial_delay: float = 0.0,
        stop_timeout: float = 5.0,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"job '{name}' interval must be positive")
        self.name = name
        self.func = func
        self.interval = interval
        self.initial_delay = initial_delay
        self.stop_timeout = stop_timeout

        self.runs = 0
        self.failures = 0
        self.last_error: Optional[BaseException] = None

        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._logger = get_logger(f"{__name__}.{name}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._logger.info(f"Starting job '{self.name}' (every {self.interval}s, first run in {self.initial_delay}s)")
        self._task = asyncio.create_task(self._run(), name=f"job:{self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._logger.info(f"Stopping job '{self.name}'...")
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            self._logger.warning(f"Job '{self.name}' did not stop within {self.stop_timeout}s; cancelled")
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> None:
        """Run the job function once, logging (not raising) its failure."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            result = self.func()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except PartialFailureError as e:
            self.failures += 1
            self.last_error = e
            self._logger.warning(f"Job '{self.name}' finished with failures: {e}")
        except Exception as e:
            self.failures += 1
            self.last_error = e
            self._logger.error(f"Job '{self.name}' failed: {e}")
        finally:
            self.runs += 1
            self._logger.debug(f"Job '{self.name}' run finished in {loop.time() - started:.2f}s")

    # ============================================
    # Core Loop
    # ============================================

    async def _run(self) -> None:
        if await self._wait(self.initial_delay):
            return
        while not self._stop.is_set():
            await self.run_once()
            if await self._wait(self.interval):
                return

    async def _wait(self, delay: float) -> bool:
        """Sleep up to `delay` seconds; True if stop was requested."""
        if delay <= 0:
            return self._stop.is_set()
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False


# ============================================
# Scheduler
# ============================================

class BackgroundScheduler:
    """
    Owns the repeating jobs of the price and FX services.

    Example:
        >>> scheduler = BackgroundScheduler(price_service, fx_service)
        >>> await scheduler.start()
        >>> ...
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        price_service,
        fx_service=None,
        caches: Optional[Sequence[Any]] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.price_service = price_service
        self.fx_service = fx_service
        self.config = config or settings

        if caches is None:
            caches = [price_service.cache]
            if fx_service is not None:
                caches.append(fx_service.cache)
        self.caches = list(caches)

        self._stop: Optional[asyncio.Event] = None
        self.jobs: Dict[str, RepeatingJob] = {job.name: job for job in self._build_jobs()}

    def _build_jobs(self) -> List[RepeatingJob]:
        config = self.config
        cmc_enabled = config.cmc_enabled and self.price_service.listings is not None

        jobs = [
            RepeatingJob("cache_sweep", self._sweep_caches, config.cache_sweep_interval,
                         initial_delay=config.cache_sweep_interval),
            RepeatingJob("top_prices_refresh", self.price_service.refresh_top_prices,
                         config.latest_prices_refresh_interval),
            RepeatingJob("coins_snapshot_refresh", self.price_service.refresh_snapshot,
                         config.coins_refresh_interval),
        ]

        if self.fx_service is not None:
            jobs.append(RepeatingJob("fx_rates_refresh", self.fx_service.refresh_rates, config.fx_refresh_interval))

        if cmc_enabled:
            jobs.append(RepeatingJob("cmc_top_prices_refresh", self.price_service.refresh_cmc_top_prices,
                                     config.latest_prices_refresh_interval))
            jobs.append(RepeatingJob("cmc_mapping", self.price_service.ensure_cmc_mapping,
                                     config.mapping_refresh_interval))

        jobs.append(RepeatingJob("history_prewarm", self._prewarm_history, config.prewarm_interval,
                                 initial_delay=config.prewarm_initial_delay))
        return jobs

    async def _sweep_caches(self) -> None:
        removed = sum(cache.sweep() for cache in self.caches)
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")

    async def _prewarm_history(self) -> None:
        await self.price_service.prewarm_history_cache(stop_event=self._stop)

    async def start(self) -> None:
        if self._stop is not None and not self._stop.is_set():
            return
        self._stop = asyncio.Event()
        logger.info(f"Starting background scheduler ({len(self.jobs)} jobs)")
        for job in self.jobs.values():
            await job.start()

    async def stop(self) -> None:
        if self._stop is None or self._stop.is_set():
            return
        logger.info("Stopping background scheduler...")
        self._stop.set()
        await asyncio.gather(*(job.stop() for job in self.jobs.values()))
        logger.info("Background scheduler stopped")
