"""
CoinMarketCap Provider

Secondary listing provider keyed by numeric CMC ids. Its catalog is
reconciled with CoinGecko's by the mapping builder.
"""

from .api_client import CoinMarketCapAPIClient, cmc_image_url

__all__ = ["CoinMarketCapAPIClient", "cmc_image_url"]
