"""
Storage Package

Handles caching and persistence.

Modules:
- ttl_cache: Generic in-memory TTL cache for one data category
- price_cache: Per-category TTL caches used by the price service
- persistent_store: Crash-safe JSON file store with an in-memory mirror
- meta_store: Coin metadata records with a max-age policy
- mapping_store: CMC -> CoinGecko mapping records

Everything here is single-process and in-memory first; files only back the
records that must survive restarts.
"""

from storage.ttl_cache import TTLCache
from storage.price_cache import PriceCache
from storage.persistent_store import PersistentStore, PersistentRecord
from storage.meta_store import CoinMetaStore
from storage.mapping_store import MappingStore

__all__ = [
    "TTLCache",
    "PriceCache",
    "PersistentStore",
    "PersistentRecord",
    "CoinMetaStore",
    "MappingStore",
]
