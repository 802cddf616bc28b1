"""
Persistent Store

Disk-backed JSON record for data that must survive restarts (coin metadata,
cross-provider mappings), with an in-memory mirror.

File layout:
    {
        "updated_at": "2024-01-01T12:00:00Z",
        "<payload_field>": [ ... records ... ]
    }

Durability:
    set() serializes the record, writes it to a fresh temporary file in the
    target directory, flushes and fsyncs it, closes it and then atomically
    renames it over the canonical path with os.replace(). A crash at any
    point leaves either the old complete file or the new complete file.
    If anything fails the temp file is removed, PersistenceError is raised
    and the mirror keeps its previous state.

Expiry is not enforced here; callers judge staleness from `updated_at`.
"""

import copy
import json
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from core.errors import PersistenceError
from core.logging import get_logger
from core.utils.time import current_utc_datetime

M = TypeVar("M", bound=BaseModel)


@dataclass
class PersistentRecord(Generic[M]):
    """A persisted payload and the time it was written."""

    updated_at: datetime
    payload: List[M]


class PersistentStore(Generic[M]):
    """
    Crash-safe JSON file store for a list of pydantic records.

    Args:
        path: Canonical file path
        model: Pydantic model of a single payload item
        payload_field: JSON field holding the payload list (e.g., "coins")
        temp_prefix: Prefix of temporary files created next to `path`

    Example:
        >>> store = PersistentStore("data/cmc_mapping.json", MappingEntry, "entries", "cmc_mapping_")
        >>> store.set(entries)
        >>> record = store.get()
        >>> record.payload[0].coingecko_id
        'bitcoin'
    """

    def __init__(self, path: str, model: Type[M], payload_field: str, temp_prefix: str = "record_") -> None:
        self.path = path
        self.payload_field = payload_field
        self._temp_prefix = temp_prefix
        self._adapter = TypeAdapter(List[model])
        self._mirror: Optional[PersistentRecord] = None
        self._lock = threading.RLock()
        self._logger = get_logger(__name__)

    # ============================================
    # Read Path
    # ============================================

    def get(self) -> Optional[PersistentRecord]:
        """
        Return the stored record.

        The mirror is consulted first; on a miss the file is read and the
        mirror populated.

        Returns:
            A copy of the record, or None if no file exists yet

        Raises:
            PersistenceError: If the file exists but cannot be read or decoded
        """
        with self._lock:
            if self._mirror is not None:
                return copy.deepcopy(self._mirror)

        record = self._load_from_file()
        if record is None:
            return None

        with self._lock:
            self._mirror = record
            return copy.deepcopy(record)

    def _load_from_file(self) -> Optional[PersistentRecord]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read {self.path}: {e}") from e

        if not isinstance(raw, dict) or "updated_at" not in raw:
            raise PersistenceError(f"Malformed record in {self.path}: missing 'updated_at'")

        try:
            updated_at = datetime.fromisoformat(str(raw["updated_at"]).replace("Z", "+00:00"))
            payload = self._adapter.validate_python(raw.get(self.payload_field) or [])
            return PersistentRecord(updated_at=updated_at, payload=payload)
        except (ValidationError, ValueError) as e:
            raise PersistenceError(f"Failed to decode {self.path}: {e}") from e

    # ============================================
    # Write Path
    # ============================================

    def set(self, payload: List[M], updated_at: Optional[datetime] = None) -> PersistentRecord:
        """
        Durably replace the stored record.

        Args:
            payload: Records to persist
            updated_at: Write time (defaults to now, UTC)

        Returns:
            The committed record

        Raises:
            PersistenceError: If serialization, write, flush or rename fails
        """
        record = PersistentRecord(updated_at=updated_at or current_utc_datetime(), payload=list(payload))

        try:
            body = json.dumps({
                "updated_at": record.updated_at.isoformat(),
                self.payload_field: self._adapter.dump_python(record.payload, mode="json"),
            })
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to serialize record for {self.path}: {e}") from e

        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=directory,
                prefix=self._temp_prefix,
                suffix=".json",
                delete=False,
            ) as tmp:
                tmp_path = tmp.name
                tmp.write(body)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None:
                try:
                    os.remove(tmp_path)
                except FileNotFoundError:
                    pass
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e

        with self._lock:
            self._mirror = record

        self._logger.debug(f"Persisted {len(record.payload)} records to {self.path}")
        return copy.deepcopy(record)
