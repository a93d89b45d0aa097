"""Ingestion entrypoint: Event Decoder -> Versioned Store."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

from cdc_engine.common.errors import DecodeError
from cdc_engine.decoding.event_parser import ChangeEventDecoder
from cdc_engine.models import VersionedRecord
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.store.versioned_store import VersionedStore

logger = get_logger(__name__)


@dataclass
class IngestResult:
    """Outcome of ingesting a batch of raw events."""

    accepted: int = 0
    rejected: int = 0
    errors: List[DecodeError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.accepted + self.rejected

    def add(self, other: "IngestResult") -> None:
        self.accepted += other.accepted
        self.rejected += other.rejected
        self.errors.extend(other.errors)


class IngestionPipeline:
    """
    Decodes raw change events and merges them into a versioned store.

    Decode failures drop the single event and are never retried; a lost store
    propagates to the caller.
    """

    def __init__(
        self,
        decoder: ChangeEventDecoder,
        store: VersionedStore,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsExporter] = None,
    ) -> None:
        """
        Initialize ingestion pipeline.

        Args:
            decoder: Decoder for the stream
            store: Store receiving the versions
            clock: Ingest-time source
            metrics: Metrics exporter
        """
        self.decoder = decoder
        self.store = store
        self.clock = clock or datetime.now
        self.metrics = metrics or MetricsExporter()

    @property
    def stream(self) -> str:
        return self.decoder.stream

    def ingest(self, raw: Any, sequence: Optional[int] = None) -> Optional[VersionedRecord]:
        """
        Decode one raw event and merge the resulting version.

        Args:
            raw: Raw change event
            sequence: Explicit ordering number (transport offset), if known

        Returns:
            The merged version, or None if the event was dropped

        Raises:
            StoreUnavailableError: If the store is lost
        """
        try:
            record = self._apply(raw, sequence)
        except DecodeError as e:
            self._dropped(e)
            return None

        self.metrics.record_merge(self.stream, 1, len(self.store), self.store.version_count())
        return record

    def ingest_batch(self, raws: Iterable[Any]) -> IngestResult:
        """
        Ingest a batch of raw events; one bad event never aborts the rest.

        Args:
            raws: Raw change events

        Returns:
            Accepted and rejected counts
        """
        result = IngestResult()
        for raw in raws:
            try:
                self._apply(raw, None)
            except DecodeError as e:
                self._dropped(e)
                result.rejected += 1
                result.errors.append(e)
                continue
            result.accepted += 1

        self.metrics.record_merge(
            self.stream, result.accepted, len(self.store), self.store.version_count()
        )

        if result.rejected:
            logger.warning(
                f"Ingested {result.accepted}/{result.total} events on {self.stream}, "
                f"{result.rejected} dropped"
            )
        return result

    def _apply(self, raw: Any, sequence: Optional[int]) -> VersionedRecord:
        event = self.decoder.decode(raw, sequence=sequence)
        record = VersionedRecord.from_event(
            event, self.decoder.extract_payload(event), ingest_time=self.clock()
        )
        self.store.merge(record)
        self.metrics.record_decoded(self.stream, event.operation.label)
        return record

    def _dropped(self, error: DecodeError) -> None:
        logger.error(
            f"Dropping event on {self.stream}: {error}",
            extra={"stream": self.stream, "reason": error.reason.value},
        )
        self.metrics.record_decode_error(self.stream, error.reason.value)
