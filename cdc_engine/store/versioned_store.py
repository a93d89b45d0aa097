"""
Versioned current-state store.

Every ingested event appends one immutable VersionedRecord. The current
version of a key is resolved at read time by last-write-wins over
(event_timestamp, sequence), so the answer depends only on the stored version
set and never on delivery order or on replaying the raw event log.

Invariants:
    - merge never inspects prior state; it always appends
    - current_of is a pure function of the versions held for the key
    - readers never observe a partially applied merge or discard
"""

import threading
from typing import Dict, Iterable, List, Optional

from cdc_engine.common.errors import CompactionError, StoreUnavailableError
from cdc_engine.models import EntityKey, VersionedRecord
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


def resolve_current(versions: Iterable[VersionedRecord]) -> Optional[VersionedRecord]:
    """Last-write-wins over a version set: maximum (timestamp, sequence)."""
    current: Optional[VersionedRecord] = None
    for version in versions:
        if current is None or version.order_key > current.order_key:
            current = version
    return current


class VersionedStore:
    """Append-only arena of immutable versions keyed by entity."""

    def __init__(self, name: str) -> None:
        """
        Initialize versioned store.

        Args:
            name: Stream / entity name the store materializes
        """
        self.name = name
        self._versions: Dict[EntityKey, List[VersionedRecord]] = {}
        self._version_count = 0
        self._lock = threading.RLock()
        self._available = True
        logger.info(f"Initialized VersionedStore for {name}")

    @property
    def available(self) -> bool:
        return self._available

    def merge(self, record: VersionedRecord) -> None:
        """
        Store a new version unconditionally.

        Re-delivered events simply add identical versions; current_of resolves
        them to the same answer.

        Raises:
            StoreUnavailableError: If the store has been closed
        """
        with self._lock:
            self._ensure_available()
            self._versions.setdefault(record.key, []).append(record)
            self._version_count += 1

    def current_of(self, key: EntityKey) -> Optional[VersionedRecord]:
        """Current version of a key, or None if the key was never seen."""
        return resolve_current(self.all_versions_of(key))

    def all_versions_of(self, key: EntityKey) -> List[VersionedRecord]:
        """All stored versions of a key, in arrival order."""
        with self._lock:
            self._ensure_available()
            return list(self._versions.get(key, ()))

    def keys(self) -> List[EntityKey]:
        """Snapshot of every key with at least one version."""
        with self._lock:
            self._ensure_available()
            return list(self._versions)

    def current_view(self) -> Dict[EntityKey, VersionedRecord]:
        """Current version of every key, deleted ones included."""
        with self._lock:
            self._ensure_available()
            return {key: resolve_current(versions) for key, versions in self._versions.items()}

    def version_count(self) -> int:
        """Number of physical versions held."""
        with self._lock:
            self._ensure_available()
            return self._version_count

    def discard(self, key: EntityKey, versions: Iterable[VersionedRecord]) -> int:
        """
        Remove exactly the given version objects of a key.

        Versions merged concurrently are untouched because removal is by
        identity. The current version can never be removed.

        Returns:
            Number of versions removed

        Raises:
            CompactionError: If the removal would drop the current version
            StoreUnavailableError: If the store has been closed
        """
        doomed = {id(v) for v in versions}
        if not doomed:
            return 0

        with self._lock:
            self._ensure_available()
            existing = self._versions.get(key)
            if not existing:
                return 0

            current = resolve_current(existing)
            if current is not None and id(current) in doomed:
                raise CompactionError(f"Refusing to discard current version of {key!r}", key)

            remaining = [v for v in existing if id(v) not in doomed]
            removed = len(existing) - len(remaining)
            self._versions[key] = remaining
            self._version_count -= removed
            return removed

    def truncate(self) -> None:
        """Drop every version (full reset)."""
        with self._lock:
            self._ensure_available()
            self._versions.clear()
            self._version_count = 0
        logger.info(f"Truncated VersionedStore {self.name}")

    def close(self) -> None:
        """Mark the store unavailable; later reads and merges fail."""
        with self._lock:
            self._available = False
            self._versions.clear()
            self._version_count = 0
        logger.warning(f"VersionedStore {self.name} closed")

    def __len__(self) -> int:
        with self._lock:
            self._ensure_available()
            return len(self._versions)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            self._ensure_available()
            return key in self._versions

    def _ensure_available(self) -> None:
        if not self._available:
            raise StoreUnavailableError(f"VersionedStore {self.name} is unavailable")
