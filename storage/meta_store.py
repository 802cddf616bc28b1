"""
Coin Metadata Store

Persists static coin metadata (id, symbol, name, image) per provider and
applies the metadata staleness policy: a record older than `max_age`
seconds is reported as not found so the caller refetches it.
"""

from typing import Optional

from core.schemas import CoinMeta, CoinMetaResponse
from core.utils.time import age_seconds, current_utc_timestamp
from storage.persistent_store import PersistentStore

DEFAULT_META_MAX_AGE = 7 * 24 * 3600


class CoinMetaStore:
    """
    Metadata store backed by `{"updated_at": ..., "coins": [...]}`.

    Example:
        >>> store = CoinMetaStore("data/coins_meta.json")
        >>> store.set(CoinMetaResponse(coins=[CoinMeta(id="bitcoin", symbol="btc", name="Bitcoin")]))
        >>> store.get().cached
        True
    """

    def __init__(self, path: str, max_age: float = DEFAULT_META_MAX_AGE, temp_prefix: str = "coins_meta_") -> None:
        self.max_age = max_age
        self._store: PersistentStore[CoinMeta] = PersistentStore(path, CoinMeta, "coins", temp_prefix)

    @property
    def path(self) -> str:
        return self._store.path

    def get(self) -> Optional[CoinMetaResponse]:
        """
        Return cached metadata if present and not stale.

        Raises:
            PersistenceError: If the file exists but is unreadable
        """
        record = self._store.get()
        if record is None:
            return None

        if age_seconds(record.updated_at) > self.max_age:
            return None

        return CoinMetaResponse(
            coins=record.payload,
            timestamp=current_utc_timestamp(milliseconds=True),
            cached=True,
            updated_at=record.updated_at,
        )

    def set(self, response: CoinMetaResponse) -> CoinMetaResponse:
        """
        Persist metadata and return the response stamped with its write time.

        Raises:
            PersistenceError: If the write fails (nothing in memory changes)
        """
        record = self._store.set(response.coins)
        return response.model_copy(update={"updated_at": record.updated_at})
