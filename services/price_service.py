"""
Price Service

Coordinates the caching layer for price data. Every read follows the same
path:

    request -> coalescer -> TTL cache / persistent store
            -> on miss: upstream provider (with its own retries)
            -> write back -> every coalesced caller gets the result

Sources:
    - CoinGecko (MarketDataProvider): coin metadata, top prices, snapshot,
      history; CoinGecko ids are the canonical ids
    - CoinMarketCap (ListingProvider, optional): CMC metadata and top prices,
      plus the CMC -> CoinGecko mapping used to resolve `cmc_id`

Store reads and writes run in a worker thread (asyncio.to_thread) so disk
I/O never blocks the event loop. Every caller receives its own copy of the
result, so mutating a response never affects cached state or other callers.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from core.config import Settings, settings
from core.errors import ConfigurationError, NotAvailableError, PartialFailureError
from core.logging import get_logger, log_cache_event
from core.provider_interface import ListingProvider, MarketDataProvider
from core.schemas import (
    CoinMetaResponse,
    CoinsResponse,
    HistoryResponse,
    LatestPricesResponse,
    MappingEntry,
)
from core.utils.time import current_utc_timestamp
from services.cache_keys import (
    CMC_COIN_META_KEY,
    CMC_LATEST_NS,
    CMC_MAPPING_KEY,
    CMC_TOP_PRICES_KEY,
    COIN_META_KEY,
    HISTORY_NS,
    LATEST_NS,
    SNAPSHOT_NS,
    TOP_COINS_KEY,
    TOP_PRICES_KEY,
    history_cache_key,
    normalize_ids,
)
from services.coalescer import Coalescer
from services.history import (
    CANONICAL_SERIES,
    canonicalize_history_request,
    finalize_history,
)
from services.mapping_builder import build_mapping_entries, chunk_symbols
from services.scheduler import PoolReport, RateLimiter, run_worker_pool
from storage.mapping_store import MappingStore
from storage.meta_store import CoinMetaStore
from storage.price_cache import PriceCache

MAPPING_SYMBOL_BATCH = 50


class PriceService:
    """
    Cached, coalesced access to prices, metadata and history.

    Example:
        >>> service = PriceService.from_settings(settings)
        >>> await service.start()
        >>> latest = await service.get_latest(["bitcoin", "ethereum"])
        >>> latest.prices["bitcoin"].usd
        42000.0
    """

    def __init__(
        self,
        market: MarketDataProvider,
        listings: Optional[ListingProvider] = None,
        cache: Optional[PriceCache] = None,
        meta_store: Optional[CoinMetaStore] = None,
        cmc_meta_store: Optional[CoinMetaStore] = None,
        map_store: Optional[MappingStore] = None,
        coalescer: Optional[Coalescer] = None,
        cmc_listing_limit: int = 100,
        prewarm_workers: int = 5,
        prewarm_rate_interval: float = 2.0,
    ) -> None:
        self.market = market
        self.listings = listings
        self.cache = cache or PriceCache()
        self.meta_store = meta_store
        self.cmc_meta_store = cmc_meta_store
        self.map_store = map_store
        self.coalescer = coalescer or Coalescer()
        self.cmc_listing_limit = cmc_listing_limit
        self.prewarm_workers = prewarm_workers
        self.prewarm_rate_interval = prewarm_rate_interval
        self._logger = get_logger(__name__)

    @classmethod
    def from_settings(cls, config: Settings = settings, coalescer: Optional[Coalescer] = None) -> "PriceService":
        """Build the service with real provider clients and stores under `data_dir`."""
        from providers.coingecko import CoinGeckoAPIClient
        from providers.coinmarketcap import CoinMarketCapAPIClient

        market = CoinGeckoAPIClient(
            base_url=config.coingecko_base_url,
            api_key=config.coingecko_api_key,
            timeout=config.request_timeout,
            max_attempts=config.upstream_max_attempts,
            coins_per_page=config.coins_per_page,
        )
        listings = CoinMarketCapAPIClient(
            base_url=config.cmc_base_url,
            api_key=config.cmc_api_key,
            timeout=config.request_timeout,
            max_attempts=config.upstream_max_attempts,
        )

        has_data_dir = bool(config.data_dir.strip())
        return cls(
            market=market,
            listings=listings,
            cache=PriceCache.from_settings(config),
            meta_store=CoinMetaStore(config.coin_meta_path, config.coin_meta_max_age) if has_data_dir else None,
            cmc_meta_store=CoinMetaStore(
                config.cmc_meta_path, config.coin_meta_max_age, temp_prefix="cmc_coins_meta_"
            ) if has_data_dir else None,
            map_store=MappingStore(config.cmc_map_path) if has_data_dir else None,
            coalescer=coalescer,
            cmc_listing_limit=config.cmc_listing_limit,
            prewarm_workers=config.prewarm_workers,
            prewarm_rate_interval=config.prewarm_rate_interval,
        )

    async def start(self) -> None:
        await self.market.initialize()
        if self.listings is not None:
            await self.listings.initialize()

    async def stop(self) -> None:
        await self.market.shutdown()
        if self.listings is not None:
            await self.listings.shutdown()

    async def _coalesce(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        value, shared = await self.coalescer.do(key, compute)
        if shared:
            log_cache_event(key.split(":", 1)[0], "shared", key, shared=True)
        return value

    # ============================================
    # Coin Metadata
    # ============================================

    async def get_coin_meta(self) -> CoinMetaResponse:
        """
        Return CoinGecko coin metadata, refreshing the persisted copy when stale.

        Raises:
            ConfigurationError: If no metadata store is configured
            UpstreamError: If the refetch fails
            PersistenceError: If the store cannot be read or written
        """
        if self.meta_store is None:
            raise ConfigurationError("meta store not configured")

        meta = await self._coalesce(COIN_META_KEY, self._load_coin_meta)
        return meta.model_copy(deep=True)

    async def _load_coin_meta(self) -> CoinMetaResponse:
        cached = await asyncio.to_thread(self.meta_store.get)
        if cached is not None:
            log_cache_event("coin_meta", "hit")
            return cached

        log_cache_event("coin_meta", "miss")
        markets = await self.market.get_coins_markets_page(1)
        response = CoinMetaResponse(
            coins=[coin.to_meta() for coin in markets],
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=False,
        )
        return await asyncio.to_thread(self.meta_store.set, response)

    async def get_cmc_coin_meta(self) -> CoinMetaResponse:
        """
        Return CoinMarketCap coin metadata, refreshing the persisted copy when stale.

        Raises:
            ConfigurationError: If the CMC store or provider is not configured
        """
        if self.cmc_meta_store is None:
            raise ConfigurationError("cmc meta store not configured")
        if self.listings is None:
            raise ConfigurationError("CMC provider not configured")

        meta = await self._coalesce(CMC_COIN_META_KEY, self._load_cmc_coin_meta)
        return meta.model_copy(deep=True)

    async def _load_cmc_coin_meta(self) -> CoinMetaResponse:
        cached = await asyncio.to_thread(self.cmc_meta_store.get)
        if cached is not None:
            log_cache_event("cmc_coin_meta", "hit")
            return cached

        log_cache_event("cmc_coin_meta", "miss")
        coins = await self.listings.get_coin_map(self.cmc_listing_limit)
        response = CoinMetaResponse(
            coins=coins,
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=False,
        )
        return await asyncio.to_thread(self.cmc_meta_store.set, response)

    # ============================================
    # Snapshot
    # ============================================

    async def get_snapshot(self) -> CoinsResponse:
        """Return the top coins with prices (cached for 2h)."""
        snapshot = await self._coalesce(SNAPSHOT_NS + TOP_COINS_KEY, self._load_snapshot)
        return snapshot.model_copy(deep=True)

    async def refresh_snapshot(self) -> CoinsResponse:
        """Refetch the top coins snapshot regardless of the cache."""
        snapshot = await self._coalesce(SNAPSHOT_NS + TOP_COINS_KEY, self._fetch_snapshot)
        return snapshot.model_copy(deep=True)

    async def _load_snapshot(self) -> CoinsResponse:
        cached, found = self.cache.get_coins()
        if found:
            log_cache_event("coins", "hit", TOP_COINS_KEY)
            return cached

        log_cache_event("coins", "miss", TOP_COINS_KEY)
        return await self._fetch_snapshot()

    async def _fetch_snapshot(self) -> CoinsResponse:
        snapshot = await self.market.get_coins_snapshot()
        self.cache.set_coins(snapshot)
        self._logger.info(f"Cached coins snapshot ({len(snapshot.coins)} coins)")
        return snapshot

    # ============================================
    # Latest Prices
    # ============================================

    async def get_latest(self, ids: Optional[List[str]] = None) -> LatestPricesResponse:
        """
        Return latest prices for CoinGecko ids, filtered from the cached top listing.

        Args:
            ids: CoinGecko ids; empty returns the whole top listing. Ids outside
                 the top listing are silently absent from the result.
        """
        top = await self._coalesce(LATEST_NS + TOP_PRICES_KEY, self._load_top_prices)
        return _filter_prices(top, ids)

    async def refresh_top_prices(self) -> LatestPricesResponse:
        """Refetch the CoinGecko top prices regardless of the cache."""
        top = await self._coalesce(LATEST_NS + TOP_PRICES_KEY, self._fetch_top_prices)
        return top.model_copy(deep=True)

    async def _load_top_prices(self) -> LatestPricesResponse:
        cached, found = self.cache.get_latest_prices(TOP_PRICES_KEY)
        if found:
            log_cache_event("latest", "hit", TOP_PRICES_KEY)
            return cached

        log_cache_event("latest", "miss", TOP_PRICES_KEY)
        return await self._fetch_top_prices()

    async def _fetch_top_prices(self) -> LatestPricesResponse:
        meta = await self.get_coin_meta()
        ids = [coin.id.lower() for coin in meta.coins if coin.id]
        if not ids:
            raise NotAvailableError("no ids available for top prices")

        prices = await self.market.get_simple_prices(ids)
        self.cache.set_latest_prices(TOP_PRICES_KEY, prices)
        return prices

    async def get_cmc_latest(self, ids: Optional[List[str]] = None) -> LatestPricesResponse:
        """Return latest prices keyed by CMC id, filtered from the cached CMC top listing."""
        if self.listings is None:
            raise ConfigurationError("CMC provider not configured")

        top = await self._coalesce(CMC_LATEST_NS + CMC_TOP_PRICES_KEY, self._load_cmc_top_prices)
        return _filter_prices(top, ids)

    async def refresh_cmc_top_prices(self) -> LatestPricesResponse:
        """Refetch the CoinMarketCap top prices regardless of the cache."""
        if self.listings is None:
            raise ConfigurationError("CMC provider not configured")

        top = await self._coalesce(CMC_LATEST_NS + CMC_TOP_PRICES_KEY, self._fetch_cmc_top_prices)
        return top.model_copy(deep=True)

    async def _load_cmc_top_prices(self) -> LatestPricesResponse:
        cached, found = self.cache.get_latest_prices(CMC_TOP_PRICES_KEY)
        if found:
            log_cache_event("cmc_latest", "hit", CMC_TOP_PRICES_KEY)
            return cached

        log_cache_event("cmc_latest", "miss", CMC_TOP_PRICES_KEY)
        return await self._fetch_cmc_top_prices()

    async def _fetch_cmc_top_prices(self) -> LatestPricesResponse:
        prices = await self.listings.get_latest_listings(self.cmc_listing_limit)
        self.cache.set_latest_prices(CMC_TOP_PRICES_KEY, prices)
        return prices

    # ============================================
    # History
    # ============================================

    async def get_history(self, coin_id: str, days: str, interval: Optional[str] = None) -> HistoryResponse:
        """
        Return a price series, fetching the canonical series on a miss.

        Every supported range is served from one canonical fetch per coin
        (see services.history); shorter ranges are sliced from it.

        Raises:
            NotAvailableError: If `coin_id` is empty or `days` is unsupported
            UpstreamError: If the canonical fetch fails
        """
        coin_id, days, interval = _clean_history_args(coin_id, days, interval)
        canonical_days, canonical_interval = canonicalize_history_request(days, interval)
        if days != canonical_days or (interval and interval != canonical_interval):
            self._logger.info(
                f"History canonicalized: request days={days} -> fetch days={canonical_days} "
                f"interval={canonical_interval}"
            )

        history = await self._warm_history(coin_id, canonical_days, canonical_interval)
        return self._client_view(history, days, canonical_days, interval)

    async def get_history_cached_only(self, coin_id: str, days: str, interval: Optional[str] = None) -> HistoryResponse:
        """
        Return a price series from the cache only; never contacts an upstream.

        Raises:
            NotAvailableError: If the canonical series is not warm, or the
                               request is invalid
        """
        coin_id, days, interval = _clean_history_args(coin_id, days, interval)
        canonical_days, canonical_interval = canonicalize_history_request(days, interval)

        key = history_cache_key(coin_id, canonical_days, canonical_interval)
        history, found = self.cache.get_history(key)
        if not found:
            log_cache_event("history", "miss", key)
            raise NotAvailableError(f"history not cached for {key}")

        log_cache_event("history", "hit", key)
        return self._client_view(history, days, canonical_days, interval)

    async def _warm_history(self, coin_id: str, days: str, interval: str) -> HistoryResponse:
        key = history_cache_key(coin_id, days, interval)

        async def load() -> HistoryResponse:
            cached, found = self.cache.get_history(key)
            if found:
                log_cache_event("history", "hit", key)
                return cached

            log_cache_event("history", "miss", key)
            history = await self.market.get_market_chart(coin_id, days, interval)
            self.cache.set_history(key, history)
            return history

        return await self._coalesce(HISTORY_NS + key, load)

    def _client_view(self, history: HistoryResponse, days: str, canonical_days: str, interval: Optional[str]) -> HistoryResponse:
        view = finalize_history(history, days, canonical_days, interval)
        if days != canonical_days:
            self._logger.info(f"History sliced: days={days} points={len(view.prices)}")
        return view

    # ============================================
    # CMC -> CoinGecko Mapping
    # ============================================

    async def resolve_cmc_id(self, cmc_id: str) -> str:
        """
        Map a CMC id to its CoinGecko id using the persisted mapping.

        Raises:
            ConfigurationError: If no mapping store is configured
            NotAvailableError: If the mapping is absent or has no entry for `cmc_id`
        """
        if self.map_store is None:
            raise ConfigurationError("cmc map store not configured")

        cmc_id = (cmc_id or "").strip()
        if not cmc_id:
            raise NotAvailableError("cmc_id cannot be empty")

        coingecko_id = await asyncio.to_thread(self.map_store.resolve, cmc_id)
        if coingecko_id is None:
            raise NotAvailableError(f"no coingecko mapping for cmc_id {cmc_id}")
        return coingecko_id

    async def ensure_cmc_mapping(self, rebuild: bool = False) -> List[MappingEntry]:
        """
        Build and persist the CMC -> CoinGecko mapping if it is absent.

        Args:
            rebuild: Rebuild even when a mapping is already stored

        Returns:
            The stored mapping entries

        Raises:
            ConfigurationError: If the mapping store or CMC provider is missing
            NotAvailableError: If no entries could be built
        """
        if self.map_store is None:
            raise ConfigurationError("cmc map store not configured")

        async def build() -> List[MappingEntry]:
            if not rebuild:
                existing = await asyncio.to_thread(self.map_store.get)
                if existing:
                    log_cache_event("cmc_mapping", "hit")
                    return existing

            log_cache_event("cmc_mapping", "miss")
            cmc_meta = await self.get_cmc_coin_meta()
            symbols = [coin.symbol for coin in cmc_meta.coins if coin.symbol]
            if not symbols:
                raise NotAvailableError("no CMC symbols available for mapping")

            cg_markets = []
            for batch in chunk_symbols(symbols, MAPPING_SYMBOL_BATCH):
                cg_markets.extend(await self.market.get_coins_markets_by_symbols(batch))

            entries = build_mapping_entries(cmc_meta.coins, cg_markets)
            if not entries:
                raise NotAvailableError("no CMC mapping entries built")

            await asyncio.to_thread(self.map_store.set, entries)
            self._logger.info(f"Stored CMC mapping: {len(entries)}/{len(cmc_meta.coins)} coins resolved")
            return entries

        entries = await self._coalesce(CMC_MAPPING_KEY, build)
        return [entry.model_copy() for entry in entries]

    # ============================================
    # History Prewarm
    # ============================================

    async def prewarm_history_cache(self, stop_event: Optional[asyncio.Event] = None) -> PoolReport:
        """
        Warm every canonical history series (365-day and max) of every mapped coin.

        Series that are still fresh are skipped before waiting on the
        rate limiter; the rest are fetched through the coalescer by a small
        worker pool sharing one permit per `prewarm_rate_interval` seconds.

        Raises:
            NotAvailableError: If there is no mapping to prewarm from
            PartialFailureError: If the sweep finished with failed series
        """
        if self.map_store is None:
            raise ConfigurationError("cmc map store not configured")

        entries = await asyncio.to_thread(self.map_store.get)
        if not entries:
            raise NotAvailableError("cmc mapping not available")

        ids = list(dict.fromkeys(entry.coingecko_id.strip() for entry in entries if entry.coingecko_id.strip()))
        if not ids:
            raise NotAvailableError("no coingecko ids available for prewarm")

        keys = [history_cache_key(coin_id, days, interval) for days, interval in CANONICAL_SERIES for coin_id in ids]

        async def warm(key: str) -> None:
            coin_id, days, interval = key.split(":")
            self._logger.debug(f"Prewarm history for {coin_id} (days={days} interval={interval})")
            await self._warm_history(coin_id, days, interval)

        self._logger.info(f"History prewarm started for {len(ids)} coins ({len(keys)} series)")
        report = await run_worker_pool(
            keys,
            warm,
            worker_count=self.prewarm_workers,
            limiter=RateLimiter(self.prewarm_rate_interval),
            should_skip=self.cache.has_history,
            stop_event=stop_event,
        )
        self._logger.info(
            f"History prewarm finished: {report.completed} fetched, {report.skipped} fresh, "
            f"{len(report.failures)} failed (of {report.total})"
        )

        if report.failures:
            raise PartialFailureError(f"prewarm completed with {len(report.failures)} failures", report)
        return report


def _clean_history_args(coin_id: str, days: str, interval: Optional[str]):
    coin_id = (coin_id or "").strip().lower()
    if not coin_id:
        raise NotAvailableError("id cannot be empty")
    days = (days or "").strip().lower()
    interval = (interval or "").strip().lower() or None
    return coin_id, days, interval


def _filter_prices(top: LatestPricesResponse, ids: Optional[List[str]]) -> LatestPricesResponse:
    _, normalized = normalize_ids(ids or [])
    if not normalized:
        return top.model_copy(deep=True)

    filtered = {coin_id: top.prices[coin_id] for coin_id in normalized if coin_id in top.prices}
    return LatestPricesResponse(
        prices={coin_id: point.model_copy() for coin_id, point in filtered.items()},
        timestamp=top.timestamp,
        cached=top.cached,
        updated_at=top.updated_at,
    )
