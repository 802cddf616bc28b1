"""
CMC -> CoinGecko Mapping Builder

Reconciles two independent coin identifier spaces by ticker symbol.

Algorithm:
    1. Bucket CoinGecko entries by upper-cased, trimmed symbol (original
       order kept inside each bucket, blank symbols dropped)
    2. For each CMC coin, look up its symbol's bucket:
         - no candidates  -> skip (expected, not an error)
         - one candidate  -> accept it
         - several        -> pick the candidate whose normalized name equals
                             the CMC coin's normalized name, otherwise the
                             first candidate
    3. Only the first entry per CMC id is kept

Falling back to the first candidate can pick the wrong coin when two coins
share a ticker and neither name matches exactly; it is kept deterministic
on purpose so rebuilds are stable.
"""

from collections import defaultdict
from typing import Dict, List, Optional

from core.schemas import CoinGeckoMarketCoin, CoinMeta, MappingEntry

_NAME_STRIP_CHARS = str.maketrans("", "", " -_.'")


def normalize_symbol(symbol: Optional[str]) -> str:
    return (symbol or "").strip().upper()


def normalize_name(name: Optional[str]) -> str:
    """
    Lowercase a coin name and strip spaces, hyphens, underscores, periods
    and apostrophes.

    Example:
        >>> normalize_name("Wrapped Bitcoin")
        'wrappedbitcoin'
        >>> normalize_name("Shiba-Inu's Token.")
        'shibainustoken'
    """
    return (name or "").strip().lower().translate(_NAME_STRIP_CHARS)


def pick_best_candidate(cmc_name: str, candidates: List[CoinGeckoMarketCoin]) -> CoinGeckoMarketCoin:
    """Choose the CoinGecko candidate for a CMC coin among same-symbol entries."""
    if len(candidates) == 1:
        return candidates[0]

    target = normalize_name(cmc_name)
    for candidate in candidates:
        if normalize_name(candidate.name) == target:
            return candidate

    return candidates[0]


def build_mapping_entries(
    cmc_coins: List[CoinMeta],
    cg_markets: List[CoinGeckoMarketCoin],
) -> List[MappingEntry]:
    """
    Build MappingEntry records for every CMC coin that can be resolved.

    Args:
        cmc_coins: CoinMarketCap catalog (id, symbol, name)
        cg_markets: CoinGecko market entries fetched for those symbols

    Returns:
        Resolved entries, at most one per CMC id, in CMC catalog order

    Example:
        >>> build_mapping_entries(
        ...     [CoinMeta(id="1", symbol="BTC", name="Bitcoin")],
        ...     [CoinGeckoMarketCoin(id="bitcoin", symbol="btc", name="Bitcoin"),
        ...      CoinGeckoMarketCoin(id="bitcoin-cash", symbol="btc", name="Bitcoin Cash")],
        ... )[0].coingecko_id
        'bitcoin'
    """
    by_symbol: Dict[str, List[CoinGeckoMarketCoin]] = defaultdict(list)
    for coin in cg_markets:
        symbol = normalize_symbol(coin.symbol)
        if not symbol:
            continue
        by_symbol[symbol].append(coin)

    entries: List[MappingEntry] = []
    seen_ids = set()
    for cmc_coin in cmc_coins:
        symbol = normalize_symbol(cmc_coin.symbol)
        if not symbol or cmc_coin.id in seen_ids:
            continue

        candidates = by_symbol.get(symbol)
        if not candidates:
            continue

        best = pick_best_candidate(cmc_coin.name, candidates)
        if not best.id:
            continue

        seen_ids.add(cmc_coin.id)
        entries.append(MappingEntry(
            cmc_id=cmc_coin.id,
            symbol=symbol,
            name=cmc_coin.name,
            coingecko_id=best.id,
        ))

    return entries


def chunk_symbols(symbols: List[str], size: int) -> List[List[str]]:
    """Split symbols into batches of at most `size` for upstream lookups."""
    if size <= 0 or not symbols:
        return []
    return [symbols[i:i + size] for i in range(0, len(symbols), size)]
