"""
Provider Interface: Abstract Contracts for Upstream Price Providers

The caching layer only depends on these contracts, never on a provider's wire
protocol. Each upstream operation returns a typed payload from core.schemas
or raises a classified error from core.errors (UpstreamError after the
client's own retries, ConfigurationError when a credential is missing).

Contracts:
    - MarketDataProvider: coin listings, simple prices, market charts (CoinGecko)
    - ListingProvider: coin map and latest listings keyed by numeric ids (CoinMarketCap)
    - RatesProvider: FX reference rates (ECB)

Example:
    class CoinGeckoProvider(MarketDataProvider):
        name = "coingecko"

        async def get_simple_prices(self, ids):
            ...

    # The price service works with any MarketDataProvider, real or fake:
    service = PriceService(market=CoinGeckoProvider(), ...)
"""

from abc import ABC, abstractmethod
from typing import List

from core.schemas import (
    CoinGeckoMarketCoin,
    CoinMeta,
    CoinsResponse,
    HistoryResponse,
    LatestPricesResponse,
    RatesResponse,
)


class ProviderInterface(ABC):
    """
    Base class for all upstream providers.

    Class Attributes:
        name: Unique identifier for the provider (lowercase, e.g., "coingecko")

    Optional Methods (can be overridden):
        - initialize: Setup HTTP sessions
        - shutdown: Cleanup sessions
    """

    name: str
    """Unique provider identifier (lowercase). Example: "coingecko", "coinmarketcap", "ecb" """

    async def initialize(self) -> None:
        """
        Initialize the provider (e.g., create the aiohttp session).

        Notes:
            - Default implementation does nothing
            - Should be idempotent (safe to call multiple times)
        """
        pass

    async def shutdown(self) -> None:
        """
        Release provider resources.

        Notes:
            - Default implementation does nothing
            - Should not raise
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}')>"


class MarketDataProvider(ProviderInterface):
    """Contract for the primary market data provider (CoinGecko ids)."""

    @abstractmethod
    async def get_coins_markets_page(self, page: int = 1, per_page: int = 250) -> List[CoinGeckoMarketCoin]:
        """
        Fetch one page of coins ordered by market cap.

        Raises:
            UpstreamError: After retries are exhausted
        """
        ...

    @abstractmethod
    async def get_coins_markets_by_symbols(self, symbols: List[str]) -> List[CoinGeckoMarketCoin]:
        """
        Fetch market entries whose ticker symbol is in `symbols`.

        Several entries may share a symbol; order follows market cap.
        """
        ...

    @abstractmethod
    async def get_coins_snapshot(self) -> CoinsResponse:
        """Fetch the top coins with current prices (the listing snapshot)."""
        ...

    @abstractmethod
    async def get_simple_prices(self, ids: List[str]) -> LatestPricesResponse:
        """Fetch latest USD prices for the given ids."""
        ...

    @abstractmethod
    async def get_market_chart(self, coin_id: str, days: str, interval: str) -> HistoryResponse:
        """
        Fetch a price series.

        Returns:
            HistoryResponse with points ascending by timestamp
        """
        ...


class ListingProvider(ProviderInterface):
    """Contract for the secondary listing provider (CoinMarketCap ids)."""

    @abstractmethod
    async def get_coin_map(self, limit: int) -> List[CoinMeta]:
        """
        Fetch the top `limit` coins' metadata.

        Raises:
            ConfigurationError: If the API key is not configured
            UpstreamError: After retries are exhausted
        """
        ...

    @abstractmethod
    async def get_latest_listings(self, limit: int) -> LatestPricesResponse:
        """Fetch latest USD prices for the top `limit` coins, keyed by CMC id."""
        ...


class RatesProvider(ProviderInterface):
    """Contract for FX reference rates."""

    @abstractmethod
    async def get_latest_rates(self) -> RatesResponse:
        """Fetch the latest reference rates in the provider's native base."""
        ...
