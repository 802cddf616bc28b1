"""
Price Cache

Groups one TTLCache per data category and exposes typed accessors for the
price service. Every getter returns a copy marked `cached=True`.

Categories and default TTLs:
    coins         top coins snapshot          2h
    latest        latest price listings       5m
    history       canonical history series    24h
    history_max   "max" range history series  7d
"""

import time
from typing import Callable, List, Optional, Tuple

from core.config import Settings
from core.schemas import CoinsResponse, HistoryResponse, LatestPricesResponse
from storage.ttl_cache import TTLCache

COINS_SNAPSHOT_KEY = "top_coins"


class PriceCache:
    """
    Category-aware façade over cachetools-backed TTLCache instances.

    Example:
        >>> cache = PriceCache.from_settings(settings)
        >>> cache.set_latest_prices("top_prices", prices)
        >>> cached, found = cache.get_latest_prices("top_prices")
        >>> cached.cached
        True
    """

    def __init__(
        self,
        coins_ttl: float = 2 * 3600,
        latest_ttl: float = 5 * 60,
        history_ttl: float = 24 * 3600,
        history_max_ttl: float = 7 * 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.coins: TTLCache[CoinsResponse] = TTLCache("coins", coins_ttl, clock)
        self.latest: TTLCache[LatestPricesResponse] = TTLCache("latest", latest_ttl, clock)
        self.history: TTLCache[HistoryResponse] = TTLCache("history", history_ttl, clock)
        self.history_max: TTLCache[HistoryResponse] = TTLCache("history_max", history_max_ttl, clock)

    @classmethod
    def from_settings(cls, config: Settings) -> "PriceCache":
        return cls(
            coins_ttl=config.coins_list_ttl,
            latest_ttl=config.latest_prices_ttl,
            history_ttl=config.history_ttl,
            history_max_ttl=config.history_max_ttl,
        )

    @property
    def categories(self) -> List[TTLCache]:
        return [self.coins, self.latest, self.history, self.history_max]

    # ============================================
    # Coins Snapshot
    # ============================================

    def get_coins(self) -> Tuple[Optional[CoinsResponse], bool]:
        value, found = self.coins.get(COINS_SNAPSHOT_KEY)
        if found:
            value.cached = True
        return value, found

    def set_coins(self, coins: CoinsResponse) -> None:
        self.coins.set(COINS_SNAPSHOT_KEY, coins)

    # ============================================
    # Latest Prices
    # ============================================

    def get_latest_prices(self, key: str) -> Tuple[Optional[LatestPricesResponse], bool]:
        value, found = self.latest.get(key)
        if found:
            value.cached = True
        return value, found

    def set_latest_prices(self, key: str, prices: LatestPricesResponse) -> None:
        self.latest.set(key, prices)

    # ============================================
    # History
    # ============================================

    def _history_category(self, key: str) -> TTLCache:
        # History keys are "{id}:{days}:{interval}"
        parts = key.split(":")
        if len(parts) >= 2 and parts[-2] == "max":
            return self.history_max
        return self.history

    def get_history(self, key: str) -> Tuple[Optional[HistoryResponse], bool]:
        value, found = self._history_category(key).get(key)
        if found:
            value.cached = True
        return value, found

    def set_history(self, key: str, history: HistoryResponse) -> None:
        self._history_category(key).set(key, history)

    def has_history(self, key: str) -> bool:
        return key in self._history_category(key)

    # ============================================
    # Maintenance
    # ============================================

    def sweep(self) -> int:
        """Sweep every category; returns the total number of removed entries."""
        return sum(cache.sweep() for cache in self.categories)
