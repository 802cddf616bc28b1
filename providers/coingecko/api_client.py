"""
CoinGecko REST API Client

Async client for the CoinGecko public API, normalizing responses into our
schemas.

API Documentation:
    https://docs.coingecko.com/reference/introduction

Endpoints Used:
    - GET /coins/markets - Coins ordered by market cap (paged, or filtered by symbols)
    - GET /simple/price - Latest USD prices for a list of ids
    - GET /coins/{id}/market_chart - Historical price series

Rate Limits:
    The public tier allows roughly 30 calls/minute, which is why every
    caller goes through the cache, the coalescer and (for bulk work) the
    prewarm rate limiter.

Usage:
    async with CoinGeckoAPIClient() as client:
        prices = await client.get_simple_prices(["bitcoin", "ethereum"])
        history = await client.get_market_chart("bitcoin", "365", "daily")
"""

from typing import Any, List, Optional

from core.errors import UpstreamError
from core.provider_interface import MarketDataProvider
from core.schemas import (
    CoinGeckoMarketCoin,
    CoinsResponse,
    HistoryPoint,
    HistoryResponse,
    LatestPricesResponse,
    PricePoint,
)
from core.utils.time import current_utc_datetime, current_utc_timestamp
from providers.http import UpstreamHTTPClient

MAX_PER_PAGE = 250


class CoinGeckoAPIClient(UpstreamHTTPClient, MarketDataProvider):
    """
    Async HTTP client for the CoinGecko API.

    Example:
        >>> async with CoinGeckoAPIClient() as client:
        ...     coins = await client.get_coins_markets_page(1)
        ...     print(f"Fetched {len(coins)} coins")
    """

    name = "coingecko"
    provider = "coingecko"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        coins_per_page: Optional[int] = None,
    ) -> None:
        from core.config import settings

        api_key = settings.coingecko_api_key if api_key is None else api_key
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-cg-demo-api-key"] = api_key

        super().__init__(
            base_url=base_url or settings.coingecko_base_url,
            timeout=timeout or settings.request_timeout,
            max_attempts=max_attempts or settings.upstream_max_attempts,
            headers=headers,
        )
        self.coins_per_page = min(coins_per_page or settings.coins_per_page, MAX_PER_PAGE)

    # ============================================
    # Coin Listings
    # ============================================

    async def get_coins_markets_page(self, page: int = 1, per_page: Optional[int] = None) -> List[CoinGeckoMarketCoin]:
        """
        Fetch one page of coins ordered by market cap.

        Args:
            page: 1-based page number
            per_page: Page size (capped at 250)

        Response Format:
            [{"id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "current_price": 42000.0, ...}]
        """
        params = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": min(per_page or self.coins_per_page, MAX_PER_PAGE),
            "page": page,
            "precision": "full",
        }

        self.logger.info(f"Fetching CoinGecko markets page {page} (per_page={params['per_page']})")
        data = await self._get("/coins/markets", params)
        coins = self._parse_markets(data)
        self.logger.info(f"Fetched {len(coins)} coins from CoinGecko markets page {page}")
        return coins

    async def get_coins_markets_by_symbols(self, symbols: List[str]) -> List[CoinGeckoMarketCoin]:
        """
        Fetch market entries for a batch of ticker symbols.

        Notes:
            - Several CoinGecko coins may share a symbol; all are returned
            - Callers should batch symbols (the mapping builder uses 50 per call)
        """
        cleaned = [s.strip().lower() for s in symbols if s and s.strip()]
        if not cleaned:
            return []

        params = {
            "vs_currency": "usd",
            "symbols": ",".join(cleaned),
            "order": "market_cap_desc",
            "per_page": MAX_PER_PAGE,
            "page": 1,
        }

        self.logger.info(f"Fetching CoinGecko markets for {len(cleaned)} symbols")
        data = await self._get("/coins/markets", params)
        return self._parse_markets(data)

    async def get_coins_snapshot(self) -> CoinsResponse:
        """Fetch the top coins with prices as a CoinsResponse."""
        markets = await self.get_coins_markets_page(1)
        return CoinsResponse(
            coins=[coin.to_coin() for coin in markets],
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=False,
            updated_at=current_utc_datetime(),
        )

    def _parse_markets(self, data: Any) -> List[CoinGeckoMarketCoin]:
        if not isinstance(data, list):
            raise UpstreamError("Unexpected CoinGecko markets response (expected a list)", provider=self.provider)
        return [CoinGeckoMarketCoin.model_validate(item) for item in data if isinstance(item, dict) and item.get("id")]

    # ============================================
    # Prices
    # ============================================

    async def get_simple_prices(self, ids: List[str]) -> LatestPricesResponse:
        """
        Fetch latest USD prices.

        Response Format:
            {"bitcoin": {"usd": 42000.0, "last_updated_at": 1704110400}}
        """
        if not ids:
            raise UpstreamError("No ids given for CoinGecko simple price request", provider=self.provider)

        params = {
            "ids": ",".join(ids),
            "vs_currencies": "usd",
            "include_last_updated_at": "true",
            "precision": "full",
        }

        self.logger.info(f"Fetching CoinGecko simple prices for {len(ids)} ids")
        data = await self._get("/simple/price", params)
        if not isinstance(data, dict):
            raise UpstreamError("Unexpected CoinGecko simple price response", provider=self.provider)

        prices = {}
        for coin_id, quote in data.items():
            if not isinstance(quote, dict) or quote.get("usd") is None:
                continue
            prices[coin_id.lower()] = PricePoint(
                usd=float(quote["usd"]),
                last_updated_at=quote.get("last_updated_at"),
            )

        return LatestPricesResponse(
            prices=prices,
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=False,
            updated_at=current_utc_datetime(),
        )

    # ============================================
    # History
    # ============================================

    async def get_market_chart(self, coin_id: str, days: str, interval: str) -> HistoryResponse:
        """
        Fetch a historical price series.

        Args:
            coin_id: CoinGecko id (e.g., "bitcoin")
            days: Range ("365", "max", ...)
            interval: Resolution ("daily"); empty lets CoinGecko choose

        Response Format:
            {"prices": [[1704067200000, 42283.58], ...], "market_caps": [...], "total_volumes": [...]}
        """
        params = {"vs_currency": "usd", "days": days}
        if interval:
            params["interval"] = interval

        self.logger.info(f"Fetching CoinGecko market chart: {coin_id} (days={days}, interval={interval})")
        data = await self._get(f"/coins/{coin_id}/market_chart", params)
        if not isinstance(data, dict) or not isinstance(data.get("prices"), list):
            raise UpstreamError(f"Unexpected CoinGecko market chart response for {coin_id}", provider=self.provider)

        points = [
            HistoryPoint(timestamp=int(item[0]), price=float(item[1]))
            for item in data["prices"]
            if isinstance(item, (list, tuple)) and len(item) >= 2 and item[1] is not None
        ]
        points.sort(key=lambda p: p.timestamp)

        self.logger.info(f"Fetched {len(points)} history points for {coin_id}")
        return HistoryResponse(
            id=coin_id,
            days=days,
            interval=interval or None,
            prices=points,
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=False,
            updated_at=current_utc_datetime(),
        )
