"""
Cache and Coalescing Keys

Keys are built deterministically from the logical query so that equivalent
requests ("BTC, eth" and "eth,btc") land on the same cache entry and the
same in-flight call.

Coalescing namespaces:
    history:      one canonical history series ("history:bitcoin:365:daily")
    latest:       CoinGecko top prices listing
    cmc_latest:   CoinMarketCap top prices listing
    snapshot:     top coins snapshot
    coin_meta / cmc_coin_meta / cmc_mapping / fx-rates: singletons
"""

from typing import Iterable, List, Tuple

HISTORY_NS = "history:"
LATEST_NS = "latest:"
CMC_LATEST_NS = "cmc_latest:"
SNAPSHOT_NS = "snapshot:"

COIN_META_KEY = "coin_meta"
CMC_COIN_META_KEY = "cmc_coin_meta"
CMC_MAPPING_KEY = "cmc_mapping"
FX_RATES_KEY = "fx-rates"

TOP_PRICES_KEY = "top_prices"
CMC_TOP_PRICES_KEY = "cmc_top_prices"
TOP_COINS_KEY = "top_coins"


def normalize_ids(ids: Iterable[str]) -> Tuple[str, List[str]]:
    """
    Lowercase, trim, deduplicate and sort identifiers.

    Returns:
        (joined, normalized) where joined is the comma-separated key form

    Example:
        >>> normalize_ids([" ETH", "btc", "eth", ""])
        ('btc,eth', ['btc', 'eth'])
    """
    normalized = sorted({(i or "").strip().lower() for i in ids} - {""})
    return ",".join(normalized), normalized


def history_cache_key(coin_id: str, days: str, interval: str) -> str:
    """Cache key of a canonical series, e.g. 'bitcoin:365:daily'."""
    return f"{coin_id}:{days}:{interval}".strip().lower()
