"""
Kafka consumer for Debezium CDC topics.

Reads change events from a Debezium topic and feeds them, unparsed, to an
ingestion pipeline. Message values are handed over as raw bytes: decoding and
error accounting belong to the Event Decoder.
"""

import threading
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple

from kafka import KafkaConsumer
from kafka.errors import KafkaError

from cdc_engine.common.config import get_settings
from cdc_engine.ingestion.pipeline import IngestionPipeline, IngestResult
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class KafkaSourceConfig:
    """Configuration for Kafka consumer"""

    bootstrap_servers: List[str]
    topic: str
    group_id: str
    auto_offset_reset: str = "earliest"
    max_poll_records: int = 500
    session_timeout_ms: int = 30000

    @classmethod
    def for_table(cls, table: str) -> "KafkaSourceConfig":
        """Build a config for an entity table's topic from settings."""
        kafka = get_settings().kafka
        return cls(
            bootstrap_servers=kafka.server_list(),
            topic=kafka.topic_for(table),
            group_id=kafka.group_id,
        )


class KafkaEventSource:
    """
    Consumes a Debezium topic.

    Offsets are committed manually after the polled batch has been merged, so a
    restart redelivers at most the batch in flight; the store absorbs the
    duplicates.
    """

    def __init__(self, config: KafkaSourceConfig) -> None:
        """
        Initialize Kafka event source.

        Args:
            config: Kafka configuration
        """
        self.config = config
        self.consumer: Optional[KafkaConsumer] = None
        self.total_consumed = 0
        self._stop = threading.Event()

        logger.info(f"Initialized KafkaEventSource for topic {config.topic}")

    def connect(self) -> None:
        """Connect to Kafka and subscribe to topic"""
        try:
            self.consumer = KafkaConsumer(
                self.config.topic,
                bootstrap_servers=self.config.bootstrap_servers,
                group_id=self.config.group_id,
                auto_offset_reset=self.config.auto_offset_reset,
                enable_auto_commit=False,
                max_poll_records=self.config.max_poll_records,
                session_timeout_ms=self.config.session_timeout_ms,
            )
            logger.info(f"Connected to Kafka topic: {self.config.topic}")

        except KafkaError as e:
            logger.error(f"Failed to connect to Kafka: {e}")
            raise

    def disconnect(self) -> None:
        """Disconnect from Kafka"""
        if self.consumer:
            self.consumer.close()
            self.consumer = None
            logger.info("Disconnected from Kafka")

    def poll(self, timeout_ms: int = 1000) -> List[Tuple[int, int, Any]]:
        """
        Poll one batch of messages.

        Args:
            timeout_ms: Poll timeout in milliseconds

        Returns:
            (partition, offset, value) tuples; tombstones are skipped
        """
        if not self.consumer:
            raise RuntimeError("Consumer not connected. Call connect() first.")

        batch = self.consumer.poll(timeout_ms=timeout_ms, max_records=self.config.max_poll_records)

        messages = []
        for _topic_partition, records in batch.items():
            for record in records:
                # Debezium emits a null-valued tombstone after each delete for log compaction
                if record.value is None:
                    continue
                messages.append((record.partition, record.offset, record.value))

        self.total_consumed += len(messages)
        if messages:
            logger.debug(f"Polled {len(messages)} events from {self.config.topic}")
        return messages

    def messages(self, timeout_ms: int = 1000) -> Iterator[Tuple[int, int, Any]]:
        """Yield messages until stop() is called."""
        while not self._stop.is_set():
            yield from self.poll(timeout_ms=timeout_ms)

    def run_into(
        self,
        pipeline: IngestionPipeline,
        max_events: Optional[int] = None,
        timeout_ms: int = 1000,
    ) -> IngestResult:
        """
        Consume into a pipeline until stopped or max_events is reached.

        Args:
            pipeline: Pipeline receiving the events
            max_events: Stop after this many messages (unlimited if None)
            timeout_ms: Poll timeout in milliseconds

        Returns:
            Accepted and rejected counts

        Raises:
            StoreUnavailableError: If the pipeline's store is lost
        """
        result = IngestResult()
        try:
            while not self._stop.is_set():
                polled = self.poll(timeout_ms=timeout_ms)
                if not polled:
                    continue

                for _partition, offset, value in polled:
                    if pipeline.ingest(value, sequence=offset) is None:
                        result.rejected += 1
                    else:
                        result.accepted += 1

                self.commit()
                if max_events is not None and result.total >= max_events:
                    break

        except KeyboardInterrupt:
            logger.info("Consumer interrupted by user")

        logger.info(
            f"Consumed {result.total} events from {self.config.topic} "
            f"({result.rejected} dropped)"
        )
        return result

    def stop(self) -> None:
        """Stop run_into/messages after the current batch."""
        self._stop.set()

    def commit(self) -> None:
        """Manually commit current offsets"""
        if not self.consumer:
            raise RuntimeError("Consumer not connected")

        self.consumer.commit()
        logger.debug("Committed offsets")
