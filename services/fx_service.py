"""
FX Rates Service

Serves FX reference rates rebased to USD. The ECB publishes rates against
EUR; every rate is divided by the EUR->USD rate so clients get
"1 USD = x CURRENCY".

Caching:
    - One cache entry, 24h TTL
    - Concurrent misses are coalesced under "fx-rates"
    - A cached payload that is not USD-based is converted and re-cached
"""

import time
from typing import Callable, Optional

from core.config import Settings, settings
from core.errors import UpstreamError
from core.logging import get_logger, log_cache_event
from core.provider_interface import RatesProvider
from core.schemas import RatesResponse
from services.cache_keys import FX_RATES_KEY
from services.coalescer import Coalescer
from storage.ttl_cache import TTLCache

RATES_CACHE_KEY = "latest"


def convert_to_usd(rates: RatesResponse) -> RatesResponse:
    """
    Rebase rates to USD.

    Every rate is divided by the USD rate, USD becomes 1.0 and EUR (the
    ECB base, absent from its own feed) becomes 1 / usd.

    Example:
        >>> convert_to_usd(RatesResponse(base="EUR", rates={"USD": 1.25, "GBP": 0.8})).rates
        {'USD': 1.0, 'GBP': 0.64, 'EUR': 0.8}

    Raises:
        UpstreamError: If the USD rate is missing or not positive
    """
    usd_rate = rates.rates.get("USD")
    if usd_rate is None or usd_rate <= 0:
        raise UpstreamError("USD rate missing from ECB response", provider="ecb")

    converted = {currency: rate / usd_rate for currency, rate in rates.rates.items()}
    converted["USD"] = 1.0
    converted.setdefault("EUR", 1 / usd_rate)

    return rates.model_copy(update={"base": "USD", "rates": converted}, deep=True)


class FXService:
    """
    Cached, coalesced access to USD-based FX rates.

    Example:
        >>> service = FXService(ECBAPIClient())
        >>> rates = await service.get_rates()
        >>> rates.rates["EUR"]
        0.92
    """

    convert_to_usd = staticmethod(convert_to_usd)

    def __init__(
        self,
        client: RatesProvider,
        cache: Optional[TTLCache] = None,
        coalescer: Optional[Coalescer] = None,
        ttl: float = 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.cache: TTLCache[RatesResponse] = cache if cache is not None else TTLCache("fx", ttl, clock)
        self.coalescer = coalescer or Coalescer()
        self._logger = get_logger(__name__)

    @classmethod
    def from_settings(cls, config: Settings = settings, coalescer: Optional[Coalescer] = None) -> "FXService":
        from providers.ecb import ECBAPIClient

        client = ECBAPIClient(
            feed_url=config.ecb_daily_url,
            timeout=config.request_timeout,
            max_attempts=config.upstream_max_attempts,
        )
        return cls(client, coalescer=coalescer, ttl=config.fx_rates_ttl)

    async def start(self) -> None:
        await self.client.initialize()

    async def stop(self) -> None:
        await self.client.shutdown()

    async def get_rates(self) -> RatesResponse:
        """
        Return USD-based rates from cache, fetching them on a miss.

        Raises:
            UpstreamError: If the ECB fetch fails or lacks a USD rate
        """
        rates, shared = await self.coalescer.do(FX_RATES_KEY, self._load_rates)
        if shared:
            log_cache_event("fx", "shared", FX_RATES_KEY, shared=True)
        return rates.model_copy(deep=True)

    async def refresh_rates(self) -> RatesResponse:
        """Fetch rates from the ECB regardless of the cache and store them."""
        rates, _ = await self.coalescer.do(FX_RATES_KEY, self._fetch_rates)
        return rates.model_copy(deep=True)

    async def _load_rates(self) -> RatesResponse:
        cached, found = self.cache.get(RATES_CACHE_KEY)
        if found:
            log_cache_event("fx", "hit", RATES_CACHE_KEY)
            cached.cached = True
            if cached.base != "USD":
                converted = convert_to_usd(cached)
                self.cache.set(RATES_CACHE_KEY, converted)
                return converted
            return cached

        log_cache_event("fx", "miss", RATES_CACHE_KEY)
        return await self._fetch_rates()

    async def _fetch_rates(self) -> RatesResponse:
        self._logger.info("Fetching FX rates from ECB")
        rates = await self.client.get_latest_rates()
        converted = convert_to_usd(rates)
        self.cache.set(RATES_CACHE_KEY, converted)
        self._logger.info(f"Cached {len(converted.rates)} FX rates (base USD)")
        return converted
