"""
Chunked bulk loading with consumer-lag backpressure.

A large snapshot is split into sequential chunks. After each chunk the
controller polls the consumer lag of the target stream and only starts the
next chunk once the lag has dropped below the threshold, or the per-chunk wait
budget has run out.
"""

import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Protocol

from cdc_engine.common.config import get_settings
from cdc_engine.common.errors import DrainTimeoutError
from cdc_engine.common.utils import chunked, format_count
from cdc_engine.ingestion.pipeline import IngestResult
from cdc_engine.loading.lag import LagObserver
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.store.versioned_store import VersionedStore

logger = get_logger(__name__)


class LoaderState(str, Enum):
    """Bulk loader lifecycle."""

    IDLE = "idle"
    LOADING = "loading"
    AWAITING_DRAIN = "awaiting_drain"
    DONE = "done"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class DrainTimeoutPolicy(str, Enum):
    """What happens when lag does not drain within the per-chunk budget."""

    WARN = "warn"
    FAIL = "fail"


class BatchSink(Protocol):
    """Destination of bulk-loaded events (pipeline or event log sink)."""

    def ingest_batch(self, raws: Iterable[Any]) -> IngestResult:
        ...


@dataclass
class ChunkReport:
    """Outcome of one chunk."""

    index: int
    size: int
    accepted: int
    rejected: int
    elapsed_seconds: float
    total_count: int
    drained: bool = True
    timed_out: bool = False
    cancelled: bool = False
    waited_seconds: float = 0.0
    final_lag: Optional[int] = None


@dataclass
class LoadReport:
    """
    Outcome of a bulk load.

    Every processed chunk ends drained, timed out or cancelled during its
    drain wait, so the three chunk counters add up to chunks_processed.
    """

    stream: str
    records_loaded: int = 0
    records_rejected: int = 0
    chunks_processed: int = 0
    chunks_drained: int = 0
    chunks_timed_out: int = 0
    chunks_cancelled: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    final_lag: Optional[int] = None
    chunks: List[ChunkReport] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.chunks_timed_out > 0

    @property
    def finished_clean(self) -> bool:
        """Every chunk loaded and drained, nothing cancelled."""
        return not self.cancelled and not self.timed_out

    def add(self, chunk: ChunkReport) -> None:
        self.chunks.append(chunk)
        self.chunks_processed += 1
        self.records_loaded += chunk.accepted
        self.records_rejected += chunk.rejected
        if chunk.timed_out:
            self.chunks_timed_out += 1
        elif chunk.cancelled:
            self.chunks_cancelled += 1
        elif chunk.drained:
            self.chunks_drained += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary."""
        data = asdict(self)
        data["timed_out"] = self.timed_out
        data["finished_clean"] = self.finished_clean
        return data


class BackpressureController:
    """Loads a bulk source chunk by chunk, waiting for lag to drain in between."""

    def __init__(
        self,
        sink: BatchSink,
        stream: str,
        lag_observer: Optional[LagObserver] = None,
        poll_interval: Optional[float] = None,
        on_timeout: DrainTimeoutPolicy = DrainTimeoutPolicy.WARN,
        store: Optional[VersionedStore] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsExporter] = None,
    ) -> None:
        """
        Initialize backpressure controller.

        Args:
            sink: Where chunks are ingested
            stream: Stream whose consumer lag gates the next chunk
            lag_observer: Lag source; without one chunks load back to back
            poll_interval: Seconds between lag polls (default from config)
            on_timeout: Drain timeout policy
            store: Store whose key count is reported after each chunk
            sleep: Wait function; defaults to a wait that cancel() interrupts
            clock: Monotonic clock in seconds
            metrics: Metrics exporter
        """
        self.sink = sink
        self.stream = stream
        self.lag_observer = lag_observer
        self.poll_interval = poll_interval or get_settings().loader.poll_interval_seconds
        self.on_timeout = DrainTimeoutPolicy(on_timeout)
        self.store = store
        self.clock = clock
        self.metrics = metrics or MetricsExporter()
        self._cancel = threading.Event()
        self._sleep = sleep or self._cancel.wait
        self._state = LoaderState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> LoaderState:
        return self._state

    @staticmethod
    def chunk_records(source: Iterable[Any], size: int) -> Iterator[List[Any]]:
        """Split a source into sequential chunks of at most size records."""
        return chunked(source, size)

    def cancel(self) -> None:
        """
        Stop after the in-flight chunk; safe to call from any thread.

        A request made while no load is running applies to the next load.
        """
        self._cancel.set()
        logger.info(f"Cancellation requested for bulk load of {self.stream}")

    def load_bulk(
        self,
        source: Iterable[Any],
        chunk_size: Optional[int] = None,
        lag_threshold: Optional[int] = None,
        max_wait_per_chunk: Optional[float] = None,
    ) -> LoadReport:
        """
        Load a bulk source in chunks with lag backpressure.

        Args:
            source: Records in load order
            chunk_size: Records per chunk (default from config)
            lag_threshold: Lag below which the next chunk may start
            max_wait_per_chunk: Drain wait budget per chunk in seconds

        Returns:
            Load report

        Raises:
            ValueError: On invalid chunk size, threshold or wait budget
            DrainTimeoutError: On a drain timeout under the FAIL policy
            StoreUnavailableError: If the store is lost mid-load
        """
        loader = get_settings().loader
        chunk_size = loader.chunk_size if chunk_size is None else chunk_size
        lag_threshold = loader.lag_threshold if lag_threshold is None else lag_threshold
        max_wait = loader.max_wait_seconds if max_wait_per_chunk is None else max_wait_per_chunk

        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if lag_threshold < 0:
            raise ValueError(f"lag_threshold must not be negative, got {lag_threshold}")
        if max_wait < 0:
            raise ValueError(f"max_wait_per_chunk must not be negative, got {max_wait}")

        with self._lock:
            if self._state in (LoaderState.LOADING, LoaderState.AWAITING_DRAIN):
                raise RuntimeError(f"Bulk load of {self.stream} already running")
            self._state = LoaderState.LOADING

        report = LoadReport(stream=self.stream)
        started = self.clock()
        logger.info(
            f"Starting bulk load of {self.stream}: chunk size {format_count(chunk_size)}, "
            f"lag threshold {format_count(lag_threshold)}, max wait {max_wait}s"
        )

        try:
            chunks = self.chunk_records(source, chunk_size)
            index = 0
            while not self._cancel.is_set():
                chunk = next(chunks, None)
                if chunk is None:
                    break
                index += 1
                chunk_report = self._load_chunk(index, chunk, lag_threshold, max_wait)
                report.add(chunk_report)

                if chunk_report.timed_out and self.on_timeout is DrainTimeoutPolicy.FAIL:
                    self._state = LoaderState.TIMED_OUT
                    report.elapsed_seconds = self.clock() - started
                    report.final_lag = chunk_report.final_lag
                    raise DrainTimeoutError(
                        f"Lag on {self.stream} still {format_count(chunk_report.final_lag)} "
                        f"after {max_wait}s (chunk {index})",
                        report=report,
                    )
            report.cancelled = self._cancel.is_set()
        except DrainTimeoutError:
            raise
        except BaseException:
            self._state = LoaderState.IDLE
            raise
        finally:
            self._cancel.clear()

        report.elapsed_seconds = self.clock() - started
        if self.lag_observer is not None:
            report.final_lag = self._observe()

        self._state = LoaderState.CANCELLED if report.cancelled else LoaderState.DONE
        logger.info(
            f"Bulk load of {self.stream} {self._state.value}: "
            f"{format_count(report.records_loaded)} records in {report.chunks_processed} chunks, "
            f"{report.records_rejected} rejected, {report.chunks_timed_out} drain timeouts, "
            f"{report.chunks_cancelled} cancelled while waiting"
        )
        return report

    def _load_chunk(
        self, index: int, chunk: List[Any], lag_threshold: int, max_wait: float
    ) -> ChunkReport:
        self._state = LoaderState.LOADING
        chunk_started = self.clock()
        result = self.sink.ingest_batch(chunk)
        elapsed = self.clock() - chunk_started

        chunk_report = ChunkReport(
            index=index,
            size=len(chunk),
            accepted=result.accepted,
            rejected=result.rejected,
            elapsed_seconds=elapsed,
            total_count=len(self.store) if self.store is not None else result.accepted,
        )
        logger.info(
            f"Chunk {index} of {self.stream}: {format_count(result.accepted)} loaded "
            f"in {elapsed:.1f}s, total {format_count(chunk_report.total_count)}"
        )

        if self.lag_observer is not None:
            self._state = LoaderState.AWAITING_DRAIN
            self._await_drain(chunk_report, lag_threshold, max_wait)

        self.metrics.record_chunk(
            self.stream, elapsed, chunk_report.waited_seconds, chunk_report.timed_out
        )
        return chunk_report

    def _await_drain(self, chunk_report: ChunkReport, lag_threshold: int, max_wait: float) -> None:
        wait_started = self.clock()
        deadline = wait_started + max_wait

        while True:
            lag = self._observe()
            chunk_report.final_lag = lag
            chunk_report.waited_seconds = self.clock() - wait_started

            # Unknown lag counts as drained so a missing monitor never stalls a load.
            if lag is None or lag == 0 or lag < lag_threshold:
                chunk_report.drained = True
                return

            chunk_report.drained = False
            if self._cancel.is_set():
                chunk_report.cancelled = True
                logger.info(f"Stopped waiting for lag on {self.stream}: load cancelled")
                return

            remaining = deadline - self.clock()
            if remaining <= 0:
                chunk_report.timed_out = True
                logger.warning(
                    f"Lag on {self.stream} did not drain within {max_wait}s "
                    f"(still {format_count(lag)}); proceeding with policy {self.on_timeout.value}",
                    extra={"stream": self.stream, "lag": lag, "chunk": chunk_report.index},
                )
                return

            logger.info(
                f"Waiting for lag on {self.stream} to drop: {format_count(lag)} "
                f"(threshold {format_count(lag_threshold)})"
            )
            self._sleep(min(self.poll_interval, remaining))

    def _observe(self) -> Optional[int]:
        lag = self.lag_observer.outstanding(self.stream)
        self.metrics.update_consumer_lag(self.stream, lag)
        return lag
