"""
CoinGecko Provider

Primary market data provider: coin listings, latest prices and price history,
all keyed by CoinGecko slug ids ("bitcoin", "ethereum", ...).
"""

from .api_client import CoinGeckoAPIClient

__all__ = ["CoinGeckoAPIClient"]
