"""Partition workers consuming an event log into an ingestion pipeline."""

import threading
import time
from typing import Callable, List, Optional

from cdc_engine.common.errors import StoreUnavailableError
from cdc_engine.ingestion.event_log import InMemoryEventLog
from cdc_engine.ingestion.pipeline import IngestionPipeline
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


class PartitionedIngestor:
    """
    One consumer thread per partition of a stream.

    Each worker feeds its partition to the pipeline in offset order, passing the
    offset as the event sequence, and commits after every batch. Same-key events
    share a partition, so their relative order is preserved.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        log: InMemoryEventLog,
        group_id: Optional[str] = None,
        batch_size: int = 500,
        poll_timeout: float = 0.1,
        throttle_seconds: float = 0.0,
    ) -> None:
        """
        Initialize partitioned ingestor.

        Args:
            pipeline: Pipeline receiving the events
            log: Event log to consume
            group_id: Consumer group (log default if omitted)
            batch_size: Max records per poll
            poll_timeout: Seconds a worker waits on an empty partition
            throttle_seconds: Pause after each batch (simulates a slow consumer)
        """
        self.pipeline = pipeline
        self.log = log
        self.group_id = group_id or log.group_id
        self.batch_size = batch_size
        self.poll_timeout = poll_timeout
        self.throttle_seconds = throttle_seconds
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._failure: Optional[BaseException] = None

    @property
    def stream(self) -> str:
        return self.pipeline.stream

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start one worker per partition."""
        if self.running:
            return

        self._stop.clear()
        self._failure = None
        self._threads = [
            threading.Thread(
                target=self._consume,
                args=(partition,),
                name=f"ingest-{self.stream}-{partition}",
                daemon=True,
            )
            for partition in range(self.log.num_partitions)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Started {len(self._threads)} partition workers for {self.stream}")

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop all workers.

        Raises:
            StoreUnavailableError: If a worker stopped because the store was lost
        """
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        self._raise_failure()

    def drain(
        self,
        timeout: float,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ) -> bool:
        """
        Wait until every published event has been consumed.

        Returns:
            True if the stream drained within the timeout
        """
        deadline = clock() + timeout
        while True:
            self._raise_failure()
            if not self.log.outstanding(self.stream, self.group_id):
                return True
            if clock() >= deadline or not self.running:
                self._raise_failure()
                return False
            time.sleep(poll_interval)

    def _consume(self, partition: int) -> None:
        while not self._stop.is_set():
            records = self.log.poll(
                self.stream,
                partition,
                max_records=self.batch_size,
                timeout=self.poll_timeout,
                group_id=self.group_id,
            )
            if not records:
                continue

            try:
                for record in records:
                    self.pipeline.ingest(record.value, sequence=record.offset)
            except StoreUnavailableError as e:
                logger.error(f"Worker {self.stream}-{partition} stopping: {e}")
                self._failure = e
                self._stop.set()
                return

            self.log.commit(self.stream, partition, records[-1].offset, group_id=self.group_id)
            if self.throttle_seconds:
                self._stop.wait(self.throttle_seconds)

    def _raise_failure(self) -> None:
        if self._failure is not None:
            raise self._failure
