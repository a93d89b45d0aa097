"""Stream and superseded-version retention."""

from cdc_engine.retention.manager import (
    KafkaRetentionBackend,
    RetentionBackend,
    RetentionManager,
    RetentionPolicy,
    RetentionPreset,
)

__all__ = [
    "KafkaRetentionBackend",
    "RetentionBackend",
    "RetentionManager",
    "RetentionPolicy",
    "RetentionPreset",
]
