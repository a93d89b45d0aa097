"""Ingestion: raw events into the versioned store."""

from cdc_engine.ingestion.event_log import EventLogSink, InMemoryEventLog, StreamRecord
from cdc_engine.ingestion.pipeline import IngestionPipeline, IngestResult
from cdc_engine.ingestion.workers import PartitionedIngestor

__all__ = [
    "EventLogSink",
    "InMemoryEventLog",
    "IngestResult",
    "IngestionPipeline",
    "PartitionedIngestor",
    "StreamRecord",
]
