"""Prometheus metrics exporters."""

from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from cdc_engine.common.config import get_settings


# Ingestion Metrics
cdc_events_decoded_total = Counter(
    "cdc_events_decoded_total",
    "Total number of change events decoded",
    ["stream", "operation"],
)

cdc_decode_errors_total = Counter(
    "cdc_decode_errors_total",
    "Total number of change events dropped by the decoder",
    ["stream", "reason"],
)

cdc_versions_merged_total = Counter(
    "cdc_versions_merged_total",
    "Total number of versions appended to the versioned store",
    ["stream"],
)

cdc_store_keys = Gauge(
    "cdc_store_keys",
    "Number of entity keys in the versioned store",
    ["stream"],
)

cdc_store_versions = Gauge(
    "cdc_store_versions",
    "Number of physical versions held by the versioned store",
    ["stream"],
)

cdc_consumer_lag_messages = Gauge(
    "cdc_consumer_lag_messages",
    "Outstanding messages for the stream's consumer group",
    ["stream"],
)

# Bulk Load Metrics
bulk_load_chunks_total = Counter(
    "bulk_load_chunks_total",
    "Bulk load chunks processed, by drain outcome",
    ["stream", "outcome"],
)

bulk_load_chunk_duration_seconds = Histogram(
    "bulk_load_chunk_duration_seconds",
    "Time taken to ingest one bulk load chunk",
    ["stream"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
)

bulk_load_drain_wait_seconds = Histogram(
    "bulk_load_drain_wait_seconds",
    "Time spent waiting for consumer lag to drain after a chunk",
    ["stream"],
    buckets=[0.0, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

# Compaction / Retention Metrics
compaction_versions_removed_total = Counter(
    "compaction_versions_removed_total",
    "Superseded versions discarded by the compactor",
    ["stream"],
)

compaction_failures_total = Counter(
    "compaction_failures_total",
    "Per-key compaction failures",
    ["stream"],
)

retention_applied_total = Counter(
    "retention_applied_total",
    "Retention policy changes applied to event streams",
    ["stream", "result"],
)


class MetricsExporter:
    """Prometheus metrics exporter."""

    def __init__(self, port: Optional[int] = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            port: Port to expose metrics on (default from config)
        """
        self.settings = get_settings()
        self.port = port or self.settings.observability.metrics_port
        self._server_started = False

    def start(self) -> None:
        """Start metrics HTTP server."""
        if not self._server_started:
            start_http_server(self.port)
            self._server_started = True

    def record_decoded(self, stream: str, operation: str) -> None:
        """Record a successfully decoded event."""
        cdc_events_decoded_total.labels(stream=stream, operation=operation).inc()

    def record_decode_error(self, stream: str, reason: str) -> None:
        """Record a dropped event."""
        cdc_decode_errors_total.labels(stream=stream, reason=reason).inc()

    def record_merge(self, stream: str, merged: int, keys: int, versions: int) -> None:
        """
        Record merged versions and the resulting store size.

        Args:
            stream: Stream (store) name
            merged: Number of versions just merged
            keys: Number of keys after the merge
            versions: Number of physical versions after the merge
        """
        if merged:
            cdc_versions_merged_total.labels(stream=stream).inc(merged)
        cdc_store_keys.labels(stream=stream).set(keys)
        cdc_store_versions.labels(stream=stream).set(versions)

    def update_consumer_lag(self, stream: str, lag: Optional[int]) -> None:
        """Update consumer lag gauge; unknown lag leaves the gauge untouched."""
        if lag is not None:
            cdc_consumer_lag_messages.labels(stream=stream).set(lag)

    def record_chunk(
        self, stream: str, duration: float, waited: float, timed_out: bool
    ) -> None:
        """
        Record a processed bulk-load chunk.

        Args:
            stream: Stream name
            duration: Ingest duration in seconds
            waited: Drain wait in seconds
            timed_out: Whether the drain wait hit its budget
        """
        outcome = "timed_out" if timed_out else "drained"
        bulk_load_chunks_total.labels(stream=stream, outcome=outcome).inc()
        bulk_load_chunk_duration_seconds.labels(stream=stream).observe(duration)
        bulk_load_drain_wait_seconds.labels(stream=stream).observe(waited)

    def record_compaction(self, stream: str, removed: int, versions: int) -> None:
        """Record versions removed by one compaction."""
        if removed:
            compaction_versions_removed_total.labels(stream=stream).inc(removed)
        cdc_store_versions.labels(stream=stream).set(versions)

    def record_compaction_failure(self, stream: str) -> None:
        """Record a failed per-key compaction."""
        compaction_failures_total.labels(stream=stream).inc()

    def record_retention(self, stream: str, success: bool) -> None:
        """Record a retention change attempt."""
        result = "success" if success else "failure"
        retention_applied_total.labels(stream=stream, result=result).inc()
