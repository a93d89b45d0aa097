"""Unit tests for the in-memory event log."""

import pytest


@pytest.mark.unit
class TestInMemoryEventLog:
    """Test partitioning, offsets, lag and retention."""

    @pytest.fixture
    def log(self, clock):
        from cdc_engine.ingestion import InMemoryEventLog

        return InMemoryEventLog(num_partitions=3, clock=clock)

    def test_same_key_same_partition(self, log):
        """Test every event for a key lands in one partition."""
        partitions = {log.append("s", ("tt1", 2), i).partition for i in range(10)}

        assert len(partitions) == 1

    def test_offsets_increase_per_partition(self, log):
        """Test per-partition offsets are sequential."""
        offsets = [log.append("s", "k", i).offset for i in range(4)]

        assert offsets == [0, 1, 2, 3]

    def test_poll_and_commit(self, log):
        """Test polling starts after the committed offset."""
        record = log.append("s", "k", "v1")
        log.append("s", "k", "v2")

        batch = log.poll("s", record.partition)
        assert [r.value for r in batch] == ["v1", "v2"]

        log.commit("s", record.partition, batch[0].offset)
        assert [r.value for r in log.poll("s", record.partition)] == ["v2"]

    def test_outstanding_per_group(self, log):
        """Test lag is tracked per consumer group."""
        for i in range(5):
            log.append("s", f"k{i}", i)
        assert log.outstanding("s") == 5

        for partition in range(log.num_partitions):
            batch = log.poll("s", partition)
            if batch:
                log.commit("s", partition, batch[-1].offset)

        assert log.outstanding("s") == 0
        assert log.outstanding("s", group_id="other") == 5
        assert log.outstanding("unknown") == 0

    def test_satisfies_lag_observer(self, log):
        """Test the log can be used as a lag observer."""
        from cdc_engine.loading import LagObserver

        assert isinstance(log, LagObserver)

    def test_retention_is_not_retroactive(self, log, clock):
        """Test retention only applies to records appended after the change."""
        log.append("s", "old", 1)
        log.apply_retention("s", 60_000)
        log.append("s", "new", 2)

        clock.advance(120)
        removed = log.expire()

        assert removed == 1
        assert log.size("s") == 1
        assert log.retention_of("s") == 60_000

    def test_expired_records_leave_lag(self, log, clock):
        """Test expired records no longer count as outstanding."""
        log.apply_retention("s", 1_000)
        log.append("s", "k", 1)
        clock.advance(2)
        log.expire()

        assert log.outstanding("s") == 0

    def test_invalid_retention(self, log):
        """Test non-positive retention is rejected."""
        with pytest.raises(ValueError):
            log.apply_retention("s", 0)


@pytest.mark.unit
class TestEventLogSink:
    """Test publishing raw events into the log."""

    def test_publish_keyed_by_entity(self, decoder, make_event):
        """Test events are keyed by their decoded entity key."""
        from cdc_engine.ingestion import EventLogSink, InMemoryEventLog

        log = InMemoryEventLog(num_partitions=2)
        sink = EventLogSink(log, decoder)

        record = sink.publish(make_event("k1"))

        assert record.key == "k1"
        assert record.stream == "ratings"

    def test_batch_rejects_keyless_events(self, decoder, make_event):
        """Test events without a key are rejected at publish time."""
        from cdc_engine.ingestion import EventLogSink, InMemoryEventLog

        log = InMemoryEventLog(num_partitions=2)
        result = EventLogSink(log, decoder).ingest_batch(
            [make_event("k1"), make_event(""), make_event("k2")]
        )

        assert (result.accepted, result.rejected) == (2, 1)
        assert log.size("ratings") == 2
