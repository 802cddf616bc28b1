"""
Unit Tests for the Price Service

These tests drive the service end to end with in-memory provider fakes and
real stores under tmp_path:
- Cold reads reach upstream exactly once, warm reads not at all
- Concurrent history misses coalesce into one canonical fetch
- Cached-only history never reaches upstream
- The CMC mapping is built once, persisted and used for resolution
- The prewarm sweep skips fresh series and reports failures

Run with:
    pytest tests/unit/test_price_service.py -v
"""

import asyncio

import pytest

from core.errors import ConfigurationError, NotAvailableError, PartialFailureError
from core.schemas import CoinMetaResponse
from services.price_service import PriceService
from storage.mapping_store import MappingStore
from storage.meta_store import CoinMetaStore
from storage.price_cache import PriceCache
from tests.unit.fakes import DEFAULT_MARKETS, FakeMarket


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def meta_store(tmp_path):
    """CoinGecko metadata store seeded with the default markets"""
    store = CoinMetaStore(str(tmp_path / "coins_meta.json"))
    store.set(CoinMetaResponse(coins=[coin.to_meta() for coin in DEFAULT_MARKETS]))
    return store


@pytest.fixture
def service(market, listings, meta_store, tmp_path, clock):
    return PriceService(
        market=market,
        listings=listings,
        cache=PriceCache(clock=clock),
        meta_store=meta_store,
        cmc_meta_store=CoinMetaStore(str(tmp_path / "cmc_coins_meta.json"), temp_prefix="cmc_coins_meta_"),
        map_store=MappingStore(str(tmp_path / "cmc_mapping.json")),
        prewarm_workers=3,
        prewarm_rate_interval=0.0,
    )


# ============================================
# Latest Prices
# ============================================

class TestGetLatest:
    """Tests for latest price reads"""

    @pytest.mark.asyncio
    async def test_cold_then_warm(self, service, market):
        """Verify a cold read makes one upstream call and a warm read makes none"""
        first = await service.get_latest([])

        assert market.calls["simple_prices"] == 1
        assert market.calls["markets_page"] == 0
        assert first.cached is False
        assert set(first.prices) == {"bitcoin", "ethereum", "bitcoin-cash"}

        second = await service.get_latest([])

        assert market.calls["simple_prices"] == 1
        assert second.cached is True

    @pytest.mark.asyncio
    async def test_filters_and_normalizes_ids(self, service):
        """Verify ids are case-folded and ids outside the listing are absent"""
        result = await service.get_latest([" ETHEREUM", "bitcoin", "unknown-coin"])

        assert sorted(result.prices) == ["bitcoin", "ethereum"]

    @pytest.mark.asyncio
    async def test_returned_copy_is_isolated(self, service):
        """Verify mutating a response does not leak into later reads"""
        result = await service.get_latest([])
        result.prices["bitcoin"].usd = 0.0

        again = await service.get_latest(["bitcoin"])
        assert again.prices["bitcoin"].usd == 42000.0

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self, service, market, clock):
        """Verify a read after the TTL reaches upstream again"""
        await service.get_latest([])
        clock.advance(service.cache.latest.ttl + 1)

        result = await service.get_latest([])

        assert market.calls["simple_prices"] == 2
        assert result.cached is False

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache(self, service, market):
        await service.get_latest([])
        await service.refresh_top_prices()

        assert market.calls["simple_prices"] == 2

    @pytest.mark.asyncio
    async def test_cmc_latest_keyed_by_cmc_id(self, service, listings):
        result = await service.get_cmc_latest(["1"])

        assert list(result.prices) == ["1"]
        assert listings.calls["latest_listings"] == 1

    @pytest.mark.asyncio
    async def test_cmc_latest_requires_provider(self, market, meta_store):
        service = PriceService(market=market, meta_store=meta_store)

        with pytest.raises(ConfigurationError):
            await service.get_cmc_latest([])


# ============================================
# Metadata and Snapshot
# ============================================

class TestMetadata:
    """Tests for persisted coin metadata"""

    @pytest.mark.asyncio
    async def test_cold_metadata_fetched_and_persisted(self, market, tmp_path):
        """Verify missing metadata is fetched once and then served from the store"""
        store = CoinMetaStore(str(tmp_path / "fresh_meta.json"))
        service = PriceService(market=market, meta_store=store)

        first = await service.get_coin_meta()
        second = await service.get_coin_meta()

        assert market.calls["markets_page"] == 1
        assert first.cached is False
        assert second.cached is True
        assert [c.id for c in second.coins] == ["bitcoin", "ethereum", "bitcoin-cash"]
        assert (tmp_path / "fresh_meta.json").exists()

    @pytest.mark.asyncio
    async def test_missing_store_is_configuration_error(self, market):
        with pytest.raises(ConfigurationError):
            await PriceService(market=market).get_coin_meta()

    @pytest.mark.asyncio
    async def test_snapshot_cached(self, service, market):
        first = await service.get_snapshot()
        second = await service.get_snapshot()

        assert market.calls["snapshot"] == 1
        assert first.cached is False
        assert second.cached is True
        assert second.coins[0].symbol == "BTC"


# ============================================
# History
# ============================================

class TestHistory:
    """Tests for canonicalized, coalesced history reads"""

    @pytest.mark.asyncio
    async def test_concurrent_misses_fetch_canonical_series_once(self, listings, meta_store):
        """Verify 10 concurrent callers share one 365-day fetch"""
        market = FakeMarket(delay=0.05)
        service = PriceService(market=market, listings=listings, meta_store=meta_store)

        results = await asyncio.gather(*(service.get_history("bitcoin", "7") for _ in range(10)))

        assert market.calls["market_chart"] == 1
        assert market.chart_requests == [("bitcoin", "365", "daily")]
        assert all(len(r.prices) == 8 for r in results)
        assert all(r.days == "7" for r in results)

    @pytest.mark.asyncio
    async def test_ranges_share_the_canonical_series(self, service, market):
        """Verify different ranges for a coin reuse the same cached fetch"""
        month = await service.get_history("bitcoin", "30")
        quarter = await service.get_history("bitcoin", "90", "daily")
        year = await service.get_history("bitcoin", "365")

        assert market.calls["market_chart"] == 1
        assert len(month.prices) == 31
        assert len(quarter.prices) == 91
        assert len(year.prices) == 365
        assert year.cached is True

    @pytest.mark.asyncio
    async def test_unsupported_days_never_reach_upstream(self, service, market):
        with pytest.raises(NotAvailableError):
            await service.get_history("bitcoin", "14")

        assert market.calls["market_chart"] == 0

    @pytest.mark.asyncio
    async def test_empty_id_rejected(self, service):
        with pytest.raises(NotAvailableError):
            await service.get_history("  ", "7")

    @pytest.mark.asyncio
    async def test_cached_only_miss(self, service, market):
        """Verify cached-only reads raise instead of fetching"""
        with pytest.raises(NotAvailableError):
            await service.get_history_cached_only("bitcoin", "7")

        assert market.calls["market_chart"] == 0

    @pytest.mark.asyncio
    async def test_cached_only_hit_after_warm(self, service, market):
        await service.get_history("bitcoin", "365")

        history = await service.get_history_cached_only("Bitcoin", "7", "daily")

        assert history.cached is True
        assert len(history.prices) == 8
        assert history.interval == "daily"
        assert market.calls["market_chart"] == 1


# ============================================
# CMC Mapping and Prewarm
# ============================================

class TestMapping:
    """Tests for building and using the CMC -> CoinGecko mapping"""

    @pytest.mark.asyncio
    async def test_ensure_builds_and_persists(self, service, market, listings):
        """Verify the mapping is built from CMC metadata and CoinGecko markets"""
        entries = await service.ensure_cmc_mapping()

        assert {e.cmc_id: e.coingecko_id for e in entries} == {"1": "bitcoin", "1027": "ethereum"}
        assert listings.calls["coin_map"] == 1
        assert market.calls["markets_by_symbols"] == 1
        assert await service.resolve_cmc_id("1027") == "ethereum"

    @pytest.mark.asyncio
    async def test_ensure_is_a_no_op_when_present(self, service, market, listings):
        await service.ensure_cmc_mapping()
        await service.ensure_cmc_mapping()

        assert market.calls["markets_by_symbols"] == 1

    @pytest.mark.asyncio
    async def test_rebuild_refetches_markets(self, service, market):
        await service.ensure_cmc_mapping()
        await service.ensure_cmc_mapping(rebuild=True)

        assert market.calls["markets_by_symbols"] == 2

    @pytest.mark.asyncio
    async def test_resolve_without_mapping(self, service):
        with pytest.raises(NotAvailableError):
            await service.resolve_cmc_id("1")

    @pytest.mark.asyncio
    async def test_resolve_unknown_id(self, service):
        await service.ensure_cmc_mapping()

        with pytest.raises(NotAvailableError):
            await service.resolve_cmc_id("9999")

    @pytest.mark.asyncio
    async def test_resolve_goes_through_mapping_store(self, service, monkeypatch):
        """Verify cmc ids are looked up with MappingStore.resolve, trimmed"""
        seen = []

        def resolve(cmc_id):
            seen.append(cmc_id)
            return "bitcoin"

        monkeypatch.setattr(service.map_store, "resolve", resolve)

        assert await service.resolve_cmc_id(" 1 ") == "bitcoin"
        assert seen == ["1"]


class TestPrewarm:
    """Tests for the history prewarm sweep"""

    @pytest.mark.asyncio
    async def test_prewarm_fetches_then_skips_fresh(self, service, market):
        """Verify a second sweep skips series that are still cached"""
        await service.ensure_cmc_mapping()

        first = await service.prewarm_history_cache()
        second = await service.prewarm_history_cache()

        assert first.completed == 4
        assert second.skipped == 4
        assert market.calls["market_chart"] == 4
        assert await service.get_history_cached_only("ethereum", "30")

    @pytest.mark.asyncio
    async def test_prewarm_makes_max_range_readable(self, service, market):
        """Verify days=max is served from the cache after a sweep"""
        await service.ensure_cmc_mapping()

        await service.prewarm_history_cache()
        history = await service.get_history_cached_only("bitcoin", "max")

        assert history.days == "max"
        assert history.cached is True
        assert ("bitcoin", "max", "daily") in market.chart_requests
        assert ("bitcoin", "365", "daily") in market.chart_requests

    @pytest.mark.asyncio
    async def test_prewarm_reports_partial_failure(self, service, market):
        """Verify failed series are collected and raised as PartialFailureError"""
        await service.ensure_cmc_mapping()
        market.failing_ids = {"ethereum"}

        with pytest.raises(PartialFailureError) as exc_info:
            await service.prewarm_history_cache()

        report = exc_info.value.report
        assert report.completed == 2
        assert set(report.failures) == {"ethereum:365:daily", "ethereum:max:daily"}

    @pytest.mark.asyncio
    async def test_prewarm_needs_mapping(self, service):
        with pytest.raises(NotAvailableError):
            await service.prewarm_history_cache()
