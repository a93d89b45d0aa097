"""
Retention management for event streams and superseded versions.

Stream retention bounds how long raw events stay replayable in the transport.
Changing it never deletes events retroactively in this engine: the backend
applies the new value to events appended from then on. Superseded-version
retention is consulted by the Compactor and only governs old versions of keys
that have a newer version.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from kafka import KafkaAdminClient
from kafka.admin import ConfigResource, ConfigResourceType
from kafka.errors import KafkaError

from cdc_engine.common.config import get_settings
from cdc_engine.common.errors import RetentionError
from cdc_engine.common.utils import format_count
from cdc_engine.loading.lag import LagObserver
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter

logger = get_logger(__name__)


class RetentionPreset(Enum):
    """Standard retention windows."""

    AGGRESSIVE = timedelta(hours=1)
    BALANCED = timedelta(hours=4)
    CONSERVATIVE = timedelta(hours=24)

    @classmethod
    def from_name(cls, name: str) -> "RetentionPreset":
        try:
            return cls[name.upper()]
        except KeyError:
            known = ", ".join(p.name.lower() for p in cls)
            raise ValueError(f"Unknown retention preset '{name}' (known: {known})") from None


class RetentionBackend(Protocol):
    """Transport that can change a stream's retention."""

    def apply_retention(self, stream: str, retention_ms: int) -> None:
        ...


@dataclass
class RetentionPolicy:
    """Retention currently in force for a stream."""

    stream: str
    duration: timedelta
    applied_at: datetime

    @property
    def retention_ms(self) -> int:
        return int(self.duration.total_seconds() * 1000)


class KafkaRetentionBackend:
    """Sets retention.ms on Kafka topics."""

    def __init__(
        self,
        bootstrap_servers: Optional[List[str]] = None,
        admin: Optional[KafkaAdminClient] = None,
    ) -> None:
        self.bootstrap_servers = bootstrap_servers or get_settings().kafka.server_list()
        self._admin = admin

    @property
    def admin(self) -> KafkaAdminClient:
        if self._admin is None:
            self._admin = KafkaAdminClient(bootstrap_servers=self.bootstrap_servers)
        return self._admin

    def apply_retention(self, stream: str, retention_ms: int) -> None:
        """
        Alter the topic's retention.ms.

        Raises:
            RetentionError: If the broker rejects the change
        """
        resource = ConfigResource(
            ConfigResourceType.TOPIC, stream, configs={"retention.ms": str(retention_ms)}
        )
        try:
            response = self.admin.alter_configs([resource])
        except KafkaError as e:
            raise RetentionError(f"Failed to alter retention of {stream}: {e}") from e

        for error_code, error_message, *_ in getattr(response, "resources", []):
            if error_code:
                raise RetentionError(
                    f"Broker rejected retention for {stream}: {error_message or error_code}"
                )

    def close(self) -> None:
        if self._admin is not None:
            self._admin.close()


class RetentionManager:
    """Validates and applies retention policies."""

    def __init__(
        self,
        backend: RetentionBackend,
        lag_observer: Optional[LagObserver] = None,
        high_lag_threshold: Optional[int] = None,
        min_duration: Optional[timedelta] = None,
        max_duration: Optional[timedelta] = None,
        strict: bool = False,
        metrics: Optional[MetricsExporter] = None,
    ) -> None:
        """
        Initialize retention manager.

        Args:
            backend: Transport applying stream retention
            lag_observer: Lag source checked before every change
            high_lag_threshold: Lag above which a change is flagged
            min_duration: Shortest allowed retention
            max_duration: Longest allowed retention
            strict: Refuse changes under high lag unless forced
            metrics: Metrics exporter
        """
        config = get_settings().retention
        self.backend = backend
        self.lag_observer = lag_observer
        self.high_lag_threshold = (
            config.high_lag_threshold if high_lag_threshold is None else high_lag_threshold
        )
        self.min_duration = min_duration or timedelta(hours=config.min_hours)
        self.max_duration = max_duration or timedelta(hours=config.max_hours)
        self.strict = strict
        self.metrics = metrics or MetricsExporter()
        self._policies: Dict[str, RetentionPolicy] = {}
        self._superseded: Dict[str, timedelta] = {}
        self._default_superseded = timedelta(seconds=config.superseded_seconds)

    def validate(self, duration: timedelta) -> None:
        """
        Raises:
            RetentionError: If duration is not a timedelta within bounds
        """
        if not isinstance(duration, timedelta):
            raise RetentionError(f"Retention must be a timedelta, got {type(duration).__name__}")
        if not self.min_duration <= duration <= self.max_duration:
            raise RetentionError(
                f"Retention {duration} outside allowed range "
                f"[{self.min_duration}, {self.max_duration}]"
            )

    def set_retention(self, stream: str, duration: timedelta, force: bool = False) -> RetentionPolicy:
        """
        Set how long raw events of a stream are kept.

        Applies to events appended after the change only.

        Args:
            stream: Stream (topic) name
            duration: Retention window
            force: Apply even when lag is high in strict mode

        Returns:
            The policy now in force

        Raises:
            RetentionError: On an invalid duration, refused high-lag change or backend failure
        """
        self.validate(duration)
        self._check_lag(stream, force)

        retention_ms = int(duration.total_seconds() * 1000)
        try:
            self.backend.apply_retention(stream, retention_ms)
        except RetentionError:
            self.metrics.record_retention(stream, success=False)
            raise
        except Exception as e:
            self.metrics.record_retention(stream, success=False)
            raise RetentionError(f"Failed to apply retention to {stream}: {e}") from e

        policy = RetentionPolicy(stream=stream, duration=duration, applied_at=datetime.now())
        self._policies[stream] = policy
        self.metrics.record_retention(stream, success=True)
        logger.info(f"Retention of {stream} set to {duration} ({retention_ms}ms)")
        return policy

    def apply_preset(
        self, streams: Iterable[str], preset: RetentionPreset, force: bool = False
    ) -> Tuple[List[str], List[str]]:
        """Apply a preset to several streams; see apply_all."""
        return self.apply_all(streams, preset.value, force=force)

    def apply_all(
        self, streams: Iterable[str], duration: timedelta, force: bool = False
    ) -> Tuple[List[str], List[str]]:
        """
        Apply one retention to several streams; one failure does not stop the rest.

        Returns:
            (succeeded, failed) stream names

        Raises:
            RetentionError: If the duration itself is invalid
        """
        self.validate(duration)
        succeeded: List[str] = []
        failed: List[str] = []
        for stream in streams:
            try:
                self.set_retention(stream, duration, force=force)
            except RetentionError as e:
                logger.error(f"Retention {duration} failed for {stream}: {e}")
                failed.append(stream)
                continue
            succeeded.append(stream)

        if failed:
            logger.warning(f"Configured {len(succeeded)} out of {len(succeeded) + len(failed)} streams")
        return succeeded, failed

    def retention_of(self, stream: str) -> Optional[timedelta]:
        policy = self._policies.get(stream)
        return policy.duration if policy else None

    def policies(self) -> Dict[str, RetentionPolicy]:
        return dict(self._policies)

    def set_superseded_window(self, stream: str, duration: timedelta) -> None:
        """Set how long superseded versions of a stream's keys are kept."""
        if not isinstance(duration, timedelta) or duration < timedelta(0):
            raise RetentionError("Superseded-version retention must be a non-negative timedelta")
        self._superseded[stream] = duration
        logger.info(f"Superseded-version retention of {stream} set to {duration}")

    def superseded_window(self, stream: str) -> timedelta:
        return self._superseded.get(stream, self._default_superseded)

    def _check_lag(self, stream: str, force: bool) -> None:
        if self.lag_observer is None:
            return

        lag = self.lag_observer.outstanding(stream)
        if lag is None:
            logger.warning(f"Could not determine lag of {stream}; proceeding")
            return
        if lag <= self.high_lag_threshold:
            return

        message = (
            f"High lag on {stream}: {format_count(lag)} messages outstanding; "
            f"events past the new retention may expire before they are consumed"
        )
        if self.strict and not force:
            raise RetentionError(message)
        logger.warning(message, extra={"stream": stream, "lag": lag})
