"""
In-memory partitioned event log.

A process-local stand-in for the message transport, used by tests, the CLI
demo loader and local runs. It offers the two surfaces the engine consumes
from a transport:

- lag observability: outstanding(stream) per consumer group
- retention: apply_retention(stream, retention_ms), taking effect only for
  records appended after the change (never retroactive)

Invariants:
    - Events with the same key always land in the same partition
    - Offsets are strictly increasing per partition and never reused
    - Thread-safe for concurrent producers and per-partition consumers
"""

import bisect
import hashlib
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from cdc_engine.common.errors import DecodeError
from cdc_engine.decoding.event_parser import ChangeEventDecoder
from cdc_engine.ingestion.pipeline import IngestResult
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_GROUP = "cdc-engine"


@dataclass
class StreamRecord:
    """One record appended to the log."""

    stream: str
    partition: int
    offset: int
    key: Any
    value: Any
    appended_at: datetime
    expires_at: Optional[datetime] = None


@dataclass
class _Partition:
    records: List[StreamRecord] = field(default_factory=list)
    next_offset: int = 0

    @property
    def start_offset(self) -> int:
        return self.records[0].offset if self.records else self.next_offset


class InMemoryEventLog:
    """Partitioned, retention-aware in-memory event log."""

    def __init__(
        self,
        num_partitions: int = 4,
        group_id: str = DEFAULT_GROUP,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize in-memory event log.

        Args:
            num_partitions: Partitions per stream
            group_id: Default consumer group for polls, commits and lag
            clock: Current-time source for retention
        """
        if num_partitions <= 0:
            raise ValueError("num_partitions must be positive")

        self.num_partitions = num_partitions
        self.group_id = group_id
        self.clock = clock or datetime.now
        self._streams: Dict[str, Dict[int, _Partition]] = defaultdict(
            lambda: {i: _Partition() for i in range(self.num_partitions)}
        )
        self._committed: Dict[tuple, int] = defaultdict(int)
        self._retention_ms: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._appended = threading.Condition(self._lock)

    def partition_for(self, key: Any) -> int:
        """Stable partition for a key (independent of Python's hash seed)."""
        digest = hashlib.md5(repr(key).encode("utf-8")).digest()
        return int.from_bytes(digest[:4], "big") % self.num_partitions

    def append(self, stream: str, key: Any, value: Any) -> StreamRecord:
        """Append one record and wake waiting consumers."""
        partition_id = self.partition_for(key)
        with self._appended:
            partition = self._streams[stream][partition_id]
            now = self.clock()
            retention_ms = self._retention_ms.get(stream)
            record = StreamRecord(
                stream=stream,
                partition=partition_id,
                offset=partition.next_offset,
                key=key,
                value=value,
                appended_at=now,
                expires_at=now + timedelta(milliseconds=retention_ms) if retention_ms else None,
            )
            partition.records.append(record)
            partition.next_offset += 1
            self._appended.notify_all()
        return record

    def poll(
        self,
        stream: str,
        partition: int,
        max_records: int = 500,
        timeout: float = 0.0,
        group_id: Optional[str] = None,
    ) -> List[StreamRecord]:
        """
        Fetch records after the group's committed offset.

        Args:
            stream: Stream name
            partition: Partition number
            max_records: Maximum records returned
            timeout: Seconds to wait for new records when none are pending
            group_id: Consumer group (default group if omitted)

        Returns:
            Records in offset order (possibly empty)
        """
        group = group_id or self.group_id
        with self._appended:
            batch = self._pending(stream, partition, group, max_records)
            if not batch and timeout > 0:
                self._appended.wait(timeout)
                batch = self._pending(stream, partition, group, max_records)
            return batch

    def commit(
        self, stream: str, partition: int, offset: int, group_id: Optional[str] = None
    ) -> None:
        """Mark every offset up to and including `offset` as consumed."""
        group = group_id or self.group_id
        with self._lock:
            position = (group, stream, partition)
            self._committed[position] = max(self._committed[position], offset + 1)

    def end_offset(self, stream: str, partition: int) -> int:
        with self._lock:
            return self._streams[stream][partition].next_offset

    def outstanding(self, stream: str, group_id: Optional[str] = None) -> Optional[int]:
        """Messages not yet consumed by the group, summed over partitions."""
        group = group_id or self.group_id
        with self._lock:
            if stream not in self._streams:
                return 0
            lag = 0
            for partition_id, partition in self._streams[stream].items():
                committed = max(self._committed[(group, stream, partition_id)], partition.start_offset)
                lag += partition.next_offset - committed
            return lag

    def apply_retention(self, stream: str, retention_ms: int) -> None:
        """Set retention for records appended from now on."""
        if retention_ms <= 0:
            raise ValueError("retention_ms must be positive")
        with self._lock:
            self._retention_ms[stream] = retention_ms
        logger.info(f"Retention for {stream} set to {retention_ms}ms (new records only)")

    def retention_of(self, stream: str) -> Optional[int]:
        with self._lock:
            return self._retention_ms.get(stream)

    def expire(self, now: Optional[datetime] = None) -> int:
        """
        Drop records whose retention has elapsed.

        Returns:
            Number of records removed
        """
        now = now or self.clock()
        removed = 0
        with self._lock:
            for partitions in self._streams.values():
                for partition in partitions.values():
                    kept = [
                        r for r in partition.records if r.expires_at is None or r.expires_at > now
                    ]
                    removed += len(partition.records) - len(kept)
                    partition.records = kept
        if removed:
            logger.info(f"Expired {removed} records past retention")
        return removed

    def size(self, stream: str) -> int:
        """Records currently retained for a stream."""
        with self._lock:
            return sum(len(p.records) for p in self._streams.get(stream, {}).values())

    def streams(self) -> List[str]:
        with self._lock:
            return list(self._streams)

    def _pending(
        self, stream: str, partition_id: int, group: str, max_records: int
    ) -> List[StreamRecord]:
        partition = self._streams[stream][partition_id]
        committed = self._committed[(group, stream, partition_id)]
        start = bisect.bisect_left(partition.records, committed, key=lambda r: r.offset)
        return partition.records[start:start + max_records]


class EventLogSink:
    """
    Publishes raw events into an event log, keyed by entity key.

    This is the bulk-load path through the transport: the loader writes here and
    partition workers consume into the store. Events whose key cannot be
    extracted are rejected at publish time.
    """

    def __init__(self, log: InMemoryEventLog, decoder: ChangeEventDecoder) -> None:
        self.log = log
        self.decoder = decoder

    @property
    def stream(self) -> str:
        return self.decoder.stream

    def publish(self, raw: Any) -> StreamRecord:
        """
        Publish one event.

        Raises:
            DecodeError: If the event has no usable key
        """
        event = self.decoder.decode(raw, sequence=0)
        return self.log.append(self.stream, event.entity_key, raw)

    def ingest_batch(self, raws: Iterable[Any]) -> IngestResult:
        """Publish a batch; bad events are counted, logged and skipped."""
        result = IngestResult()
        for raw in raws:
            try:
                self.publish(raw)
            except DecodeError as e:
                logger.error(
                    f"Rejecting event on {self.stream}: {e}",
                    extra={"stream": self.stream, "reason": e.reason.value},
                )
                result.rejected += 1
                result.errors.append(e)
                continue
            result.accepted += 1
        return result
