"""
CMC -> CoinGecko Mapping Store

Persists the list of MappingEntry records built by the mapping builder.
Mappings are not TTL-expired; they are replaced wholesale when rebuilt.
An empty list is never written and an empty file reads as not found.
"""

from typing import List, Optional

from core.schemas import MappingEntry
from storage.persistent_store import PersistentStore


class MappingStore:
    """
    Mapping store backed by `{"updated_at": ..., "entries": [...]}`.

    Example:
        >>> store = MappingStore("data/cmc_mapping.json")
        >>> store.set([MappingEntry(cmc_id="1", symbol="BTC", name="Bitcoin", coingecko_id="bitcoin")])
        >>> store.resolve("1")
        'bitcoin'
    """

    def __init__(self, path: str, temp_prefix: str = "cmc_mapping_") -> None:
        self._store: PersistentStore[MappingEntry] = PersistentStore(path, MappingEntry, "entries", temp_prefix)

    @property
    def path(self) -> str:
        return self._store.path

    def get(self) -> Optional[List[MappingEntry]]:
        """
        Return a copy of the stored entries, or None when absent/empty.

        Raises:
            PersistenceError: If the file exists but is unreadable
        """
        record = self._store.get()
        if record is None or not record.payload:
            return None
        return record.payload

    def set(self, entries: List[MappingEntry]) -> None:
        """
        Replace the stored mapping.

        Raises:
            ValueError: If `entries` is empty
            PersistenceError: If the write fails
        """
        if not entries:
            raise ValueError("cmc mapping entries are empty")
        self._store.set(entries)

    def resolve(self, cmc_id: str) -> Optional[str]:
        """Return the CoinGecko id mapped to `cmc_id`, if any."""
        entries = self.get() or []
        for entry in entries:
            if entry.cmc_id == cmc_id:
                return entry.coingecko_id or None
        return None
