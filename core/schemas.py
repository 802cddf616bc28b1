"""
Normalized Data Schemas

This module defines Pydantic models for all price data types.
These schemas provide a unified, provider-agnostic data format.

Key Principle:
    Regardless of which provider the data comes from (CoinGecko, CoinMarketCap,
    ECB), it gets normalized into these standardized schemas before it is
    cached, persisted or returned to clients.

Models:
    - Coin / CoinMeta: Coin listing entries with and without prices
    - CoinsResponse / CoinMetaResponse: Top coins snapshot and metadata payloads
    - PricePoint / LatestPricesResponse: Latest USD prices keyed by provider id
    - HistoryPoint / HistoryResponse: Historical price series
    - MappingEntry: Resolved CoinMarketCap -> CoinGecko link
    - CoinGeckoMarketCoin: Raw /coins/markets entry
    - RatesResponse: FX rates

Every response payload carries:
    - timestamp: Freshness stamp in milliseconds since epoch
    - cached: True when served from cache/store instead of a fresh fetch
    - updated_at: Internal refresh time (never serialized)
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================
# Base Payload Model
# ============================================

class CachedPayload(BaseModel):
    """
    Base model for all payloads served by the caching layer.

    The `cached` flag and `timestamp` give clients the freshness of what they
    got; `updated_at` is bookkeeping for stores and is excluded from JSON.
    """

    timestamp: int = Field(
        default=0,
        description="Freshness timestamp in milliseconds since epoch"
    )

    cached: bool = Field(
        default=False,
        description="True if served from cache"
    )

    updated_at: Optional[datetime] = Field(
        default=None,
        exclude=True,
        description="Internal refresh time (not serialized)"
    )


# ============================================
# Coin Listings
# ============================================

class Coin(BaseModel):
    """
    A cryptocurrency with metadata and current price.

    Example:
        >>> Coin(id="bitcoin", symbol="BTC", name="Bitcoin", current_price=42000.0)
    """

    id: str = Field(..., description="CoinGecko ID", examples=["bitcoin"])
    symbol: str = Field(..., description="Uppercase ticker", examples=["BTC"])
    name: str = Field(..., description="Full name", examples=["Bitcoin"])
    image: str = Field(default="", description="Logo URL")
    current_price: float = Field(default=0.0, ge=0)
    market_cap: float = Field(default=0.0, ge=0)
    market_cap_rank: int = Field(default=0, ge=0)
    price_change_percentage_24h: float = Field(default=0.0)

    @field_validator('symbol')
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Ensure symbol is uppercase"""
        return v.upper()


class CoinMeta(BaseModel):
    """Static coin metadata (no prices)."""

    id: str = Field(..., description="Provider ID (CoinGecko slug or CMC numeric id)")
    symbol: str = Field(default="")
    name: str = Field(default="")
    image: str = Field(default="")


class CoinsResponse(CachedPayload):
    """Top coins snapshot returned to clients."""

    coins: List[Coin] = Field(default_factory=list)


class CoinMetaResponse(CachedPayload):
    """Coin metadata returned to clients."""

    coins: List[CoinMeta] = Field(default_factory=list)


# ============================================
# Latest Prices
# ============================================

class PricePoint(BaseModel):
    """Latest USD price of a single coin."""

    usd: float = Field(..., description="Price in USD")
    last_updated_at: Optional[int] = Field(
        default=None,
        description="Provider update time in seconds since epoch"
    )


class LatestPricesResponse(CachedPayload):
    """
    Latest prices keyed by provider id.

    Example:
        {"prices": {"bitcoin": {"usd": 42000.0}}, "timestamp": 1704110400000, "cached": true}
    """

    prices: Dict[str, PricePoint] = Field(default_factory=dict)


# ============================================
# History
# ============================================

class HistoryPoint(BaseModel):
    """Price at a specific time."""

    timestamp: int = Field(..., description="Milliseconds since epoch")
    price: float = Field(...)


class HistoryResponse(CachedPayload):
    """
    Historical price series for one coin.

    `days`/`interval` describe the range the client asked for; `prices` is
    ascending by timestamp.
    """

    id: str = Field(..., description="CoinGecko ID")
    days: str = Field(..., examples=["7", "30", "90", "365", "max"])
    interval: Optional[str] = Field(default=None, examples=["daily"])
    prices: List[HistoryPoint] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "bitcoin",
                "days": "7",
                "interval": "daily",
                "prices": [{"timestamp": 1704067200000, "price": 42283.58}],
                "timestamp": 1704110400000,
                "cached": True
            }
        }
    )


# ============================================
# Cross-Provider Mapping
# ============================================

class MappingEntry(BaseModel):
    """
    Resolved CoinMarketCap -> CoinGecko link.

    Attributes:
        cmc_id: CoinMarketCap numeric id as string (external id)
        symbol: Uppercase ticker used for matching
        name: CMC coin name
        coingecko_id: CoinGecko id chosen for this coin (canonical id)
    """

    cmc_id: str
    symbol: str
    name: str
    coingecko_id: str


class CoinGeckoMarketCoin(BaseModel):
    """Single coin entry from CoinGecko /coins/markets."""

    id: str
    symbol: str = ""
    name: str = ""
    image: Optional[str] = None
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    market_cap_rank: Optional[int] = None
    price_change_percentage_24h: Optional[float] = None

    def to_coin(self) -> Coin:
        return Coin(
            id=self.id,
            symbol=self.symbol,
            name=self.name,
            image=self.image or "",
            current_price=self.current_price or 0.0,
            market_cap=self.market_cap or 0.0,
            market_cap_rank=self.market_cap_rank or 0,
            price_change_percentage_24h=self.price_change_percentage_24h or 0.0,
        )

    def to_meta(self) -> CoinMeta:
        return CoinMeta(id=self.id, symbol=self.symbol, name=self.name, image=self.image or "")


# ============================================
# FX Rates
# ============================================

class RatesResponse(CachedPayload):
    """
    FX rates relative to `base`.

    Example:
        {"base": "USD", "rates": {"USD": 1.0, "EUR": 0.8}, "timestamp": 1704110400000, "cached": false}
    """

    base: str = Field(..., examples=["USD", "EUR"])
    rates: Dict[str, float] = Field(default_factory=dict)
