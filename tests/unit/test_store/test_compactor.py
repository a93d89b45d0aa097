"""Unit tests for the compactor."""

from datetime import timedelta
from unittest.mock import patch

import pytest


@pytest.mark.unit
class TestCompactor:
    """Test retention-aware, per-key isolated compaction."""

    @pytest.fixture
    def pipeline(self, decoder, store, clock):
        from cdc_engine.ingestion import IngestionPipeline

        return IngestionPipeline(decoder, store, clock=clock)

    @pytest.fixture
    def compactor(self, store, clock):
        from cdc_engine.store import Compactor

        return Compactor(store, superseded_retention=timedelta(hours=1), clock=clock)

    def test_superseded_versions_kept_within_retention(self, pipeline, store, compactor, make_event):
        """Test nothing is discarded before the retention window elapses."""
        pipeline.ingest(make_event("k1", ts=1))
        pipeline.ingest(make_event("k1", ts=2))

        result = compactor.compact("k1")

        assert result.removed == 0
        assert result.skipped_reason == "within retention"
        assert len(store.all_versions_of("k1")) == 2

    def test_superseded_versions_removed_after_retention(
        self, pipeline, store, compactor, clock, make_event
    ):
        """Test old superseded versions go once retention has elapsed."""
        pipeline.ingest(make_event("k1", ts=1, rating=1.0))
        pipeline.ingest(make_event("k1", ts=2, rating=2.0))
        clock.advance(3600)

        result = compactor.compact("k1")

        assert result.removed == 1
        assert [v.payload["rating"] for v in store.all_versions_of("k1")] == [2.0]

    def test_retention_counts_from_supersession(
        self, pipeline, store, compactor, clock, make_event
    ):
        """Test a long-lived version is kept for the full window after it is replaced."""
        pipeline.ingest(make_event("k1", ts=1, rating=1.0))
        clock.advance(3 * 3600)
        pipeline.ingest(make_event("k1", ts=2, rating=2.0))

        result = compactor.compact("k1")

        assert result.removed == 0
        assert result.skipped_reason == "within retention"

        clock.advance(3600)

        assert compactor.compact("k1").removed == 1
        assert [v.payload["rating"] for v in store.all_versions_of("k1")] == [2.0]

    def test_current_version_never_compacted(self, pipeline, store, compactor, clock, make_event):
        """Test the current version survives even when it arrived first and is old."""
        pipeline.ingest(make_event("k1", ts=50, rating=5.0))
        clock.advance(7200)
        pipeline.ingest(make_event("k1", ts=10, rating=1.0))
        clock.advance(7200)

        compactor.compact("k1")

        assert store.current_of("k1").payload["rating"] == 5.0
        assert len(store.all_versions_of("k1")) == 1

    def test_deleted_current_version_is_kept(self, pipeline, store, compactor, clock, make_event):
        """Test a delete tombstone stays as the current version."""
        pipeline.ingest(make_event("k1", ts=1))
        pipeline.ingest(make_event("k1", op="d", ts=2))
        clock.advance(7200)

        compactor.compact("k1")

        assert store.current_of("k1").is_deleted

    def test_compaction_does_not_change_current_view(
        self, pipeline, store, compactor, clock, make_event
    ):
        """Test compaction preserves every key's current version."""
        for i in range(5):
            pipeline.ingest(make_event("a", ts=i, votes=i))
            pipeline.ingest(make_event("b", ts=10 - i, votes=i))
        before = {k: v.payload for k, v in store.current_view().items()}
        clock.advance(7200)

        compaction = compactor.compact_all()

        assert compaction.removed == 8
        assert {k: v.payload for k, v in store.current_view().items()} == before

    def test_failure_isolated_per_key(self, pipeline, store, compactor, clock, make_event):
        """Test one failing key does not stop the others and is retried next pass."""
        from cdc_engine.common.errors import CompactionError

        for key in ("a", "b", "c"):
            pipeline.ingest(make_event(key, ts=1))
            pipeline.ingest(make_event(key, ts=2))
        clock.advance(7200)

        original = store.discard

        def flaky(key, versions):
            if key == "b":
                raise CompactionError("disk hiccup", key)
            return original(key, versions)

        with patch.object(store, "discard", side_effect=flaky):
            compaction = compactor.compact_all()

        assert compaction.failed_keys == ["b"]
        assert compaction.removed == 2
        assert compactor.pending_retry == {"b"}

        retry = compactor.compact_all()

        assert retry.failed_keys == []
        assert compactor.pending_retry == set()
        assert len(store.all_versions_of("b")) == 1

    def test_store_loss_propagates(self, pipeline, store, compactor, make_event):
        """Test an unavailable store ends the pass with an error."""
        from cdc_engine.common.errors import StoreUnavailableError

        pipeline.ingest(make_event("k1", ts=1))
        store.close()

        with pytest.raises(StoreUnavailableError):
            compactor.compact_all()

    def test_window_from_retention_manager(self, store, clock):
        """Test an attached retention manager supplies the window."""
        from cdc_engine.store import Compactor

        class Retention:
            def superseded_window(self, stream):
                return timedelta(minutes=5)

        compactor = Compactor(store, retention=Retention(), clock=clock)

        assert compactor.window == timedelta(minutes=5)

    def test_unknown_key(self, compactor):
        """Test compacting an unknown key is a no-op."""
        result = compactor.compact("missing")

        assert result.removed == 0
        assert result.skipped_reason == "unknown key"

    def test_background_thread_start_stop(self, compactor):
        """Test the background thread starts and stops cleanly."""
        compactor.start(interval_seconds=60)
        compactor.start(interval_seconds=60)
        compactor.stop(timeout=1)

        assert compactor._thread is None
