"""
Background compaction of superseded versions.

A version is discarded only when a newer version for the same key exists
and the superseded-version retention window has elapsed since it was
superseded, measured from the first arrival of a version ordered at or
above it. Compaction of one key never affects another: failures are
logged and the key is retried on the next pass.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Set

from cdc_engine.common.config import get_settings
from cdc_engine.common.errors import StoreUnavailableError
from cdc_engine.models import EntityKey, VersionedRecord
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.store.versioned_store import VersionedStore, resolve_current

logger = get_logger(__name__)


@dataclass
class CompactionResult:
    """Outcome of compacting one key."""

    key: EntityKey
    removed: int
    kept: int
    skipped_reason: Optional[str] = None


@dataclass
class CompactionPass:
    """Outcome of one compaction pass over the store."""

    results: List[CompactionResult] = field(default_factory=list)
    failed_keys: List[EntityKey] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def removed(self) -> int:
        return sum(r.removed for r in self.results)

    @property
    def compacted_keys(self) -> int:
        return sum(1 for r in self.results if r.removed)


class Compactor:
    """Discards superseded versions, isolated per key."""

    def __init__(
        self,
        store: VersionedStore,
        retention: Optional[Any] = None,
        superseded_retention: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsExporter] = None,
    ) -> None:
        """
        Initialize compactor.

        Args:
            store: Store to compact
            retention: RetentionManager consulted for the superseded-version window
            superseded_retention: Window used when no RetentionManager is attached
            clock: Current-time source
            metrics: Metrics exporter
        """
        self.store = store
        self.retention = retention
        self._superseded_retention = superseded_retention
        self.clock = clock or datetime.now
        self.metrics = metrics or MetricsExporter()
        self._retry: Set[EntityKey] = set()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def window(self) -> timedelta:
        """Superseded-version retention currently in force."""
        if self.retention is not None:
            return self.retention.superseded_window(self.store.name)
        if self._superseded_retention is not None:
            return self._superseded_retention
        return timedelta(seconds=get_settings().retention.superseded_seconds)

    @property
    def pending_retry(self) -> Set[EntityKey]:
        """Keys whose last compaction failed."""
        return set(self._retry)

    def compact(self, key: EntityKey) -> CompactionResult:
        """
        Discard every superseded version of a key that is past retention.

        The current version is never a candidate.

        Raises:
            CompactionError: If the store refuses the discard
            StoreUnavailableError: If the store is gone
        """
        versions = self.store.all_versions_of(key)
        current = resolve_current(versions)
        if current is None:
            return CompactionResult(key=key, removed=0, kept=0, skipped_reason="unknown key")

        cutoff = self.clock() - self.window
        doomed = [
            v for v in versions
            if v is not current and self._superseded_at(v, versions) <= cutoff
        ]
        if not doomed:
            reason = "nothing superseded" if len(versions) == 1 else "within retention"
            return CompactionResult(key=key, removed=0, kept=len(versions), skipped_reason=reason)

        removed = self.store.discard(key, doomed)
        self.metrics.record_compaction(self.store.name, removed, self.store.version_count())
        logger.debug(f"Compacted {key!r} on {self.store.name}: removed {removed} versions")
        return CompactionResult(key=key, removed=removed, kept=len(versions) - removed)

    @staticmethod
    def _superseded_at(version: VersionedRecord, versions: List[VersionedRecord]) -> datetime:
        """Ingest time at which a non-current version stopped being current."""
        later = [
            w.ingest_time for w in versions
            if w is not version and w.order_key >= version.order_key
        ]
        return max(version.ingest_time, min(later))

    def compact_all(self) -> CompactionPass:
        """
        Compact every key once; a failing key is queued for the next pass.

        Raises:
            StoreUnavailableError: If the store is lost mid-pass
        """
        compaction = CompactionPass()
        keys = self.store.keys()
        # Previously failed keys go first so they are not starved.
        ordered = [k for k in keys if k in self._retry] + [k for k in keys if k not in self._retry]

        for key in ordered:
            try:
                result = self.compact(key)
            except StoreUnavailableError:
                raise
            except Exception as e:
                logger.error(f"Compaction failed for {key!r} on {self.store.name}: {e}", exc_info=True)
                self.metrics.record_compaction_failure(self.store.name)
                self._retry.add(key)
                compaction.failed_keys.append(key)
                continue

            self._retry.discard(key)
            compaction.results.append(result)

        compaction.completed_at = datetime.now()
        logger.info(
            f"Compaction pass on {self.store.name}: removed {compaction.removed} versions "
            f"across {compaction.compacted_keys} keys, {len(compaction.failed_keys)} failures"
        )
        return compaction

    def start(self, interval_seconds: Optional[float] = None) -> None:
        """Run compaction passes on a background thread until stop() is called."""
        if self._thread is not None and self._thread.is_alive():
            return

        interval = interval_seconds or get_settings().compaction.interval_seconds
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(interval,), name=f"compactor-{self.store.name}", daemon=True
        )
        self._thread.start()
        logger.info(f"Started compactor for {self.store.name} every {interval}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background thread after its current pass."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.compact_all()
            except StoreUnavailableError:
                logger.error(f"Store {self.store.name} unavailable; compactor stopping")
                return
