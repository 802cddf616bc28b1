"""
CoinMarketCap REST API Client

Async client for the CoinMarketCap pro API. Every endpoint requires an API
key (X-CMC_PRO_API_KEY); without one the client raises ConfigurationError
before touching the network.

Endpoints Used:
    - GET /cryptocurrency/map - Coin ids, symbols and names sorted by rank
    - GET /cryptocurrency/listings/latest - Latest USD quotes for top coins

CMC numeric ids are exposed as strings throughout the application.
"""

from typing import Any, List, Optional

from core.errors import ConfigurationError, UpstreamError
from core.provider_interface import ListingProvider
from core.schemas import CoinMeta, LatestPricesResponse, PricePoint
from core.utils.time import current_utc_datetime, current_utc_timestamp
from providers.http import UpstreamHTTPClient

IMAGE_URL_TEMPLATE = "https://s2.coinmarketcap.com/static/img/coins/64x64/{id}.png"


def cmc_image_url(cmc_id: int) -> str:
    return IMAGE_URL_TEMPLATE.format(id=cmc_id)


class CoinMarketCapAPIClient(UpstreamHTTPClient, ListingProvider):
    """
    Async HTTP client for the CoinMarketCap API.

    Example:
        >>> async with CoinMarketCapAPIClient(api_key="...") as client:
        ...     meta = await client.get_coin_map(100)
    """

    name = "coinmarketcap"
    provider = "coinmarketcap"

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        from core.config import settings

        self.api_key = settings.cmc_api_key if api_key is None else api_key
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-CMC_PRO_API_KEY"] = self.api_key

        super().__init__(
            base_url=base_url or settings.cmc_base_url,
            timeout=timeout or settings.request_timeout,
            max_attempts=max_attempts or settings.upstream_max_attempts,
            backoff=0.75,
            headers=headers,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> None:
        if not self.api_key:
            raise ConfigurationError("CMC API key not configured")

    # ============================================
    # API Methods
    # ============================================

    async def get_coin_map(self, limit: int) -> List[CoinMeta]:
        """
        Fetch top coins by rank with metadata.

        Response Format:
            {"data": [{"id": 1, "name": "Bitcoin", "symbol": "BTC", ...}]}
        """
        self._require_key()
        if limit <= 0:
            raise ValueError("limit must be > 0")

        self.logger.info(f"Fetching CMC coin map (limit={limit})")
        data = await self._get("/cryptocurrency/map", {"sort": "cmc_rank", "limit": limit})

        meta = [
            CoinMeta(
                id=str(coin["id"]),
                symbol=coin.get("symbol") or "",
                name=coin.get("name") or "",
                image=cmc_image_url(coin["id"]),
            )
            for coin in self._data_list(data, "map")
            if isinstance(coin, dict) and coin.get("id") is not None
        ]

        self.logger.info(f"Fetched {len(meta)} CMC coins")
        return meta

    async def get_latest_listings(self, limit: int) -> LatestPricesResponse:
        """
        Fetch latest USD prices for the top coins.

        Response Format:
            {"data": [{"id": 1, "quote": {"USD": {"price": 42000.0}}}]}
        """
        self._require_key()
        if limit <= 0:
            raise ValueError("limit must be > 0")

        self.logger.info(f"Fetching CMC latest listings (limit={limit})")
        data = await self._get(
            "/cryptocurrency/listings/latest",
            {"start": 1, "limit": limit, "convert": "USD"},
        )

        now_s = current_utc_timestamp()
        prices = {}
        for coin in self._data_list(data, "listings"):
            if not isinstance(coin, dict) or coin.get("id") is None:
                continue
            price = ((coin.get("quote") or {}).get("USD") or {}).get("price")
            if price is None:
                continue
            prices[str(coin["id"])] = PricePoint(usd=float(price), last_updated_at=now_s)

        return LatestPricesResponse(
            prices=prices,
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=False,
            updated_at=current_utc_datetime(),
        )

    def _data_list(self, data: Any, what: str) -> List[Any]:
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise UpstreamError(f"Failed to decode CMC {what} response", provider=self.provider)
        return data["data"]
