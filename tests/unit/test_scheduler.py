"""
Unit Tests for the Background Scheduler

Run with:
    pytest tests/unit/test_scheduler.py -v
"""

import asyncio

import pytest

from core.config import Settings
from core.schemas import LatestPricesResponse
from services.fx_service import FXService
from services.price_service import PriceService
from services.scheduler import BackgroundScheduler, RateLimiter, RepeatingJob, run_worker_pool
from storage.price_cache import PriceCache
from tests.unit.fakes import FakeRates


class TestRateLimiter:
    """Tests for the shared rate gate"""

    @pytest.mark.asyncio
    async def test_first_permit_immediate_then_spaced(self):
        """Verify permits after the first are spaced by the interval"""
        limiter = RateLimiter(0.05)
        loop = asyncio.get_running_loop()

        started = loop.time()
        await limiter.acquire()
        first = loop.time() - started
        await limiter.acquire()
        await limiter.acquire()
        total = loop.time() - started

        assert first < 0.04
        assert total >= 0.09

    @pytest.mark.asyncio
    async def test_shared_across_concurrent_callers(self):
        """Verify concurrent callers together respect the rate"""
        limiter = RateLimiter(0.03)
        loop = asyncio.get_running_loop()
        grants = []

        async def take():
            await limiter.acquire()
            grants.append(loop.time())

        await asyncio.gather(*(take() for _ in range(4)))

        gaps = [b - a for a, b in zip(grants, grants[1:])]
        assert all(gap >= 0.025 for gap in gaps)


class TestWorkerPool:
    """Tests for run_worker_pool"""

    @pytest.mark.asyncio
    async def test_collects_completions_skips_and_failures(self):
        """Verify per-item failures are recorded without stopping the sweep"""
        handled = []

        async def handler(item):
            if item == 3:
                raise RuntimeError("boom")
            handled.append(item)

        report = await run_worker_pool(
            [1, 2, 3, 4, 5, 6],
            handler,
            worker_count=2,
            should_skip=lambda item: item == 2,
        )

        assert sorted(handled) == [1, 4, 5, 6]
        assert report.total == 6
        assert report.completed == 4
        assert report.skipped == 1
        assert report.failures == {"3": "boom"}
        assert report.processed == 6

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_worker_count(self):
        active = 0
        peak = 0

        async def handler(item):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await run_worker_pool(list(range(10)), handler, worker_count=3)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_skip_check_happens_before_limiter(self):
        """Verify fresh items never consume a rate limiter permit"""
        limiter = RateLimiter(10.0)

        async def handler(item):
            pass

        report = await asyncio.wait_for(
            run_worker_pool(list(range(5)), handler, 2, limiter=limiter, should_skip=lambda item: item > 0),
            timeout=1.0,
        )

        assert report.completed == 1
        assert report.skipped == 4

    @pytest.mark.asyncio
    async def test_stop_event_halts_sweep(self):
        stop = asyncio.Event()
        stop.set()

        async def handler(item):
            raise AssertionError("should not run")

        report = await run_worker_pool([1, 2, 3], handler, 2, stop_event=stop)

        assert report.processed == 0


class TestRepeatingJob:
    """Tests for job lifecycle"""

    @pytest.mark.asyncio
    async def test_runs_repeatedly_until_stopped(self):
        runs = 0

        async def tick():
            nonlocal runs
            runs += 1

        job = RepeatingJob("tick", tick, interval=0.01)
        await job.start()
        await asyncio.sleep(0.06)
        await job.stop()

        assert runs >= 2
        assert job.running is False
        stopped_at = runs
        await asyncio.sleep(0.03)
        assert runs == stopped_at

    @pytest.mark.asyncio
    async def test_failure_does_not_kill_loop(self):
        """Verify a raising job keeps being scheduled"""
        async def broken():
            raise RuntimeError("nope")

        job = RepeatingJob("broken", broken, interval=0.01)
        await job.start()
        await asyncio.sleep(0.05)
        await job.stop()

        assert job.failures >= 2
        assert isinstance(job.last_error, RuntimeError)

    @pytest.mark.asyncio
    async def test_stop_interrupts_initial_delay(self):
        """Verify stop() returns promptly while the job waits for its first run"""
        async def never():
            raise AssertionError("should not run")

        job = RepeatingJob("delayed", never, interval=60, initial_delay=60)
        await job.start()

        await asyncio.wait_for(job.stop(), timeout=1.0)

        assert job.runs == 0

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            RepeatingJob("bad", lambda: None, interval=0)


class TestBackgroundScheduler:
    """Tests for the job set and lifecycle of the scheduler"""

    def _service(self, market, listings, meta_store_path, clock):
        from storage.meta_store import CoinMetaStore
        from storage.mapping_store import MappingStore

        return PriceService(
            market=market,
            listings=listings,
            cache=PriceCache(clock=clock),
            meta_store=CoinMetaStore(str(meta_store_path / "coins_meta.json")),
            map_store=MappingStore(str(meta_store_path / "cmc_mapping.json")),
        )

    def test_cmc_jobs_only_with_key(self, market, listings, tmp_path, clock):
        """Verify CMC jobs are registered only when a CMC key is configured"""
        service = self._service(market, listings, tmp_path, clock)

        without_key = BackgroundScheduler(service, config=Settings(_env_file=None, cmc_api_key=""))
        with_key = BackgroundScheduler(service, FXService(FakeRates()), config=Settings(_env_file=None, cmc_api_key="k"))

        assert set(without_key.jobs) == {"cache_sweep", "top_prices_refresh", "coins_snapshot_refresh", "history_prewarm"}
        assert set(with_key.jobs) == {
            "cache_sweep",
            "top_prices_refresh",
            "coins_snapshot_refresh",
            "fx_rates_refresh",
            "cmc_top_prices_refresh",
            "cmc_mapping",
            "history_prewarm",
        }

    @pytest.mark.asyncio
    async def test_cache_sweep_job_drops_expired_entries(self, market, listings, tmp_path, clock):
        service = self._service(market, listings, tmp_path, clock)
        fx = FXService(FakeRates(), clock=clock)
        scheduler = BackgroundScheduler(service, fx, config=Settings(_env_file=None))
        service.cache.set_latest_prices("top_prices", LatestPricesResponse())
        await fx.get_rates()
        clock.advance(fx.cache.ttl + 1)

        await scheduler.jobs["cache_sweep"].run_once()

        assert len(service.cache.latest) == 0
        assert len(fx.cache) == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, market, listings, tmp_path, clock):
        """Verify every job starts and stop() leaves none running"""
        service = self._service(market, listings, tmp_path, clock)
        scheduler = BackgroundScheduler(service, config=Settings(_env_file=None, cmc_api_key=""))

        await scheduler.start()
        assert all(job.running for job in scheduler.jobs.values())

        await scheduler.stop()
        assert not any(job.running for job in scheduler.jobs.values())
