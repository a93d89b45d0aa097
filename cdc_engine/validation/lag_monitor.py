"""CDC lag monitoring and validation."""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterator, Optional

from cdc_engine.common.config import get_settings
from cdc_engine.common.utils import format_count, ms_to_datetime
from cdc_engine.loading.lag import LagObserver
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.store.versioned_store import VersionedStore
from cdc_engine.validation import ValidationResult, ValidationStatus

logger = get_logger(__name__)


@dataclass
class LagSample:
    """One lag measurement, with change since the previous sample."""

    stream: str
    taken_at: float
    lag: Optional[int]
    records: Optional[int] = None
    lag_change: Optional[int] = None
    record_change: Optional[int] = None
    rate_per_second: Optional[float] = None

    @property
    def is_baseline(self) -> bool:
        return self.lag_change is None


class LagMonitor:
    """Monitors CDC lag and validates against thresholds."""

    def __init__(
        self,
        observer: Optional[LagObserver] = None,
        threshold_messages: Optional[int] = None,
        threshold_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        metrics: Optional[MetricsExporter] = None,
    ) -> None:
        """
        Initialize lag monitor.

        Args:
            observer: Message-count lag source
            threshold_messages: Maximum allowed outstanding messages (default from config)
            threshold_seconds: Maximum allowed replication delay (default from config)
            clock: Monotonic clock for rates
            sleep: Wait function between watch samples
            metrics: Metrics exporter
        """
        settings = get_settings()
        self.observer = observer
        self.threshold_messages = (
            settings.loader.lag_threshold if threshold_messages is None else threshold_messages
        )
        self.threshold_seconds = threshold_seconds or settings.app.cdc_lag_threshold_seconds
        self.clock = clock
        self.sleep = sleep
        self.metrics = metrics or MetricsExporter()
        self.name = "LagMonitor"
        self._previous: Dict[str, LagSample] = {}
        self._last_progress: Dict[str, LagSample] = {}

    def validate_lag(self, stream: str) -> ValidationResult:
        """
        Validate outstanding messages against the threshold.

        Args:
            stream: Stream (topic) name

        Returns:
            Validation result; SKIPPED when lag cannot be determined
        """
        lag = self.observer.outstanding(stream) if self.observer is not None else None
        self.metrics.update_consumer_lag(stream, lag)

        if lag is None:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.SKIPPED,
                message=f"Lag of {stream} could not be determined",
                details={"stream": stream},
            )

        details = {"stream": stream, "lag": lag, "threshold": self.threshold_messages}
        if lag <= self.threshold_messages:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"CDC lag is acceptable: {format_count(lag)} messages",
                details=details,
            )
        return ValidationResult(
            validator=self.name,
            status=ValidationStatus.FAILED,
            message=f"CDC lag exceeds threshold: {format_count(lag)} > {format_count(self.threshold_messages)}",
            details=details,
        )

    def sample(self, stream: str, store: Optional[VersionedStore] = None) -> LagSample:
        """
        Take a lag sample and compare it with the previous one for the stream.

        Args:
            stream: Stream (topic) name
            store: Store whose key count is tracked alongside the lag

        Returns:
            The sample; the first sample per stream is a baseline
        """
        now = self.clock()
        lag = self.observer.outstanding(stream) if self.observer is not None else None
        records = len(store) if store is not None else None
        self.metrics.update_consumer_lag(stream, lag)

        current = LagSample(stream=stream, taken_at=now, lag=lag, records=records)
        previous = self._previous.get(stream)
        if previous is not None and previous.lag is not None and lag is not None:
            current.lag_change = lag - previous.lag
            elapsed = now - previous.taken_at
            if records is not None and previous.records is not None:
                current.record_change = records - previous.records
                if elapsed > 0:
                    current.rate_per_second = current.record_change / elapsed
            elif elapsed > 0:
                current.rate_per_second = -current.lag_change / elapsed

        if lag is not None and (
            lag == 0 or previous is None or previous.lag is None or lag < previous.lag
        ):
            self._last_progress[stream] = current
        self._previous[stream] = current
        return current

    def watch(
        self,
        stream: str,
        interval: float = 30.0,
        until_below: Optional[int] = None,
        store: Optional[VersionedStore] = None,
        max_samples: Optional[int] = None,
    ) -> Iterator[LagSample]:
        """
        Sample lag periodically until it drops below a threshold.

        Args:
            stream: Stream (topic) name
            interval: Seconds between samples
            until_below: Stop once lag is below this (default: message threshold)
            store: Store whose key count is tracked
            max_samples: Stop after this many samples

        Yields:
            Lag samples
        """
        target = self.threshold_messages if until_below is None else until_below
        taken = 0
        while True:
            current = self.sample(stream, store)
            taken += 1
            yield current

            if current.lag is not None and current.lag < target:
                logger.info(f"CDC lag on {stream} below {format_count(target)}: {format_count(current.lag)}")
                return
            if max_samples is not None and taken >= max_samples:
                return
            self.sleep(interval)

    def calculate_lag(
        self, event_timestamp: datetime, processing_timestamp: Optional[datetime] = None
    ) -> float:
        """
        Calculate replication delay in seconds.

        Args:
            event_timestamp: When the change happened at the source
            processing_timestamp: When it was merged (default: now)

        Returns:
            Lag in seconds
        """
        if processing_timestamp is None:
            processing_timestamp = datetime.now()

        lag = (processing_timestamp - event_timestamp).total_seconds()
        return max(0, lag)

    def validate_event_lag(self, store: VersionedStore) -> ValidationResult:
        """
        Validate the replication delay of every current version in a store.

        Versions with no source timestamp are ignored.
        """
        lags = [
            self.calculate_lag(ms_to_datetime(record.event_timestamp), record.ingest_time)
            for record in store.current_view().values()
            if record.event_timestamp > 0
        ]
        if not lags:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.SKIPPED,
                message="No timestamped versions to validate",
            )

        details = {
            "event_count": len(lags),
            "avg_lag_seconds": sum(lags) / len(lags),
            "max_lag_seconds": max(lags),
            "threshold_seconds": self.threshold_seconds,
        }
        if details["max_lag_seconds"] <= self.threshold_seconds:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"Replication delay acceptable: max={details['max_lag_seconds']:.2f}s",
                details=details,
            )
        return ValidationResult(
            validator=self.name,
            status=ValidationStatus.FAILED,
            message=f"Replication delay exceeds threshold: max={details['max_lag_seconds']:.2f}s > {self.threshold_seconds}s",
            details=details,
        )

    def check_staleness(self, stream: str, stall_seconds: float = 300.0) -> ValidationResult:
        """
        Check whether the consumer is still making progress on a stream.

        Progress means lag went down (or reached zero) between samples; the
        baseline sample counts as progress. Uses the samples taken by sample()
        and watch().

        Args:
            stream: Stream (topic) name
            stall_seconds: Seconds without progress, while lag is outstanding, before warning

        Returns:
            Validation result; SKIPPED before the first sample or when lag is unknown
        """
        latest = self._previous.get(stream)
        if latest is None or latest.lag is None or stream not in self._last_progress:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.SKIPPED,
                message=f"No lag samples for {stream}",
                details={"stream": stream},
            )

        last_progress = self._last_progress[stream]
        stalled_for = latest.taken_at - last_progress.taken_at
        details = {
            "stream": stream,
            "lag": latest.lag,
            "seconds_without_progress": stalled_for,
            "stall_seconds": stall_seconds,
        }

        if latest.lag == 0 or latest is last_progress or stalled_for < stall_seconds:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"Consumer is progressing on {stream}: lag {format_count(latest.lag)}",
                details=details,
            )
        return ValidationResult(
            validator=self.name,
            status=ValidationStatus.WARNING,
            message=(
                f"Consumer may be stalled on {stream}: lag {format_count(latest.lag)} "
                f"has not dropped for {stalled_for:.0f}s"
            ),
            details=details,
        )
