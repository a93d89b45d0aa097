"""Soft-delete projection: the active view over a versioned store."""

from typing import Iterator, List, Optional

from cdc_engine.models import EntityKey, VersionedRecord
from cdc_engine.store.versioned_store import VersionedStore


class SoftDeleteProjector:
    """
    Read-side filter yielding keys whose current version is not deleted.

    Always derived from VersionedStore.current_of; nothing is copied, so the
    active view cannot drift from the store.
    """

    def __init__(self, store: VersionedStore) -> None:
        self.store = store

    def scan(self) -> Iterator[VersionedRecord]:
        """
        Lazily yield the current, non-deleted version of every key.

        Each call starts a fresh scan over a snapshot of the key set; keys
        merged after the scan starts are picked up by the next scan.
        """
        for key in self.store.keys():
            current = self.store.current_of(key)
            if current is not None and not current.is_deleted:
                yield current

    def get(self, key: EntityKey) -> Optional[VersionedRecord]:
        """Active version of a key, or None if absent or deleted."""
        current = self.store.current_of(key)
        if current is None or current.is_deleted:
            return None
        return current

    def keys(self) -> List[EntityKey]:
        return [record.key for record in self.scan()]

    def count(self) -> int:
        return sum(1 for _ in self.scan())

    def __iter__(self) -> Iterator[VersionedRecord]:
        return self.scan()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None
