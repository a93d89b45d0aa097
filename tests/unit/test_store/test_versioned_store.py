"""Unit tests for the versioned store."""

import threading
from datetime import datetime

import pytest

from cdc_engine.models import Operation, VersionedRecord


def version(key="k1", ts=100, seq=1, op=Operation.UPDATE, **payload):
    return VersionedRecord(
        key=key,
        payload={"key": key, **payload},
        operation=op,
        event_timestamp=ts,
        sequence=seq,
        is_deleted=op is Operation.DELETE,
        ingest_time=datetime(2024, 1, 1),
        checksum=str(sorted(payload.items())),
    )


@pytest.mark.unit
class TestVersionedStore:
    """Test append-only merge and last-write-wins reads."""

    def test_merge_appends_every_version(self, store):
        """Test merge never replaces earlier versions."""
        store.merge(version(ts=100, seq=1, rating=1.0))
        store.merge(version(ts=90, seq=2, rating=2.0))

        assert len(store.all_versions_of("k1")) == 2
        assert store.version_count() == 2
        assert len(store) == 1

    def test_current_is_max_timestamp(self, store):
        """Test the highest timestamp wins regardless of arrival order."""
        store.merge(version(ts=105, seq=2, rating=9.0))
        store.merge(version(ts=100, seq=1, rating=8.5))

        assert store.current_of("k1").payload["rating"] == 9.0

    def test_sequence_breaks_timestamp_ties(self, store):
        """Test equal timestamps resolve by sequence."""
        store.merge(version(ts=100, seq=9, rating=2.0))
        store.merge(version(ts=100, seq=3, rating=1.0))

        assert store.current_of("k1").sequence == 9

    def test_unknown_key(self, store):
        """Test unknown keys have no current version."""
        assert store.current_of("missing") is None
        assert store.all_versions_of("missing") == []
        assert "missing" not in store

    def test_all_versions_returns_copy(self, store):
        """Test callers cannot mutate stored state through the returned list."""
        store.merge(version())
        store.all_versions_of("k1").clear()

        assert len(store.all_versions_of("k1")) == 1

    def test_current_view_includes_deleted(self, store):
        """Test the current view keeps soft-deleted keys."""
        store.merge(version("a", ts=1))
        store.merge(version("b", ts=1))
        store.merge(version("b", ts=2, op=Operation.DELETE))

        view = store.current_view()

        assert set(view) == {"a", "b"}
        assert view["b"].is_deleted

    def test_discard_refuses_current(self, store):
        """Test the current version can never be discarded."""
        from cdc_engine.common.errors import CompactionError

        old = version(ts=1, seq=1)
        new = version(ts=2, seq=2)
        store.merge(old)
        store.merge(new)

        with pytest.raises(CompactionError):
            store.discard("k1", [new])

        assert store.discard("k1", [old]) == 1
        assert store.all_versions_of("k1") == [new]
        assert store.version_count() == 1

    def test_discard_is_by_identity(self, store):
        """Test discarding one of two identical redeliveries removes only that one."""
        first = version(ts=1, seq=1)
        duplicate = version(ts=1, seq=1)
        newest = version(ts=2, seq=2)
        for v in (first, duplicate, newest):
            store.merge(v)

        assert store.discard("k1", [first]) == 1
        assert len(store.all_versions_of("k1")) == 2

    def test_truncate(self, store):
        """Test truncate resets the store."""
        store.merge(version())
        store.truncate()

        assert len(store) == 0
        assert store.version_count() == 0

    def test_closed_store_is_fatal(self, store):
        """Test reads and merges on a closed store raise StoreUnavailableError."""
        from cdc_engine.common.errors import StoreUnavailableError

        store.merge(version())
        store.close()

        assert not store.available
        with pytest.raises(StoreUnavailableError):
            store.merge(version())
        with pytest.raises(StoreUnavailableError):
            store.current_of("k1")

    def test_concurrent_merges(self, store):
        """Test concurrent merges for different keys lose nothing."""

        def worker(prefix):
            for i in range(200):
                store.merge(version(f"{prefix}-{i}", ts=i, seq=i))

        threads = [threading.Thread(target=worker, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store) == 800
        assert store.version_count() == 800


@pytest.mark.unit
class TestResolveCurrent:
    """Test the last-write-wins resolution function."""

    def test_empty(self):
        """Test an empty version set has no current version."""
        from cdc_engine.store import resolve_current

        assert resolve_current([]) is None

    def test_identical_redeliveries_resolve_equal(self):
        """Test duplicates resolve to an equal version whatever their order."""
        from cdc_engine.store import resolve_current

        a = version(ts=5, seq=1, rating=1.0)
        b = version(ts=5, seq=1, rating=1.0)

        assert resolve_current([a, b]) == resolve_current([b, a])
