"""Bulk loading with lag backpressure."""

from cdc_engine.loading.backpressure import (
    BackpressureController,
    ChunkReport,
    DrainTimeoutPolicy,
    LoaderState,
    LoadReport,
)
from cdc_engine.loading.lag import ConsoleLagObserver, KafkaLagObserver, LagObserver
from cdc_engine.loading.sources import count_data_rows, read_tsv, rows_to_events

__all__ = [
    "BackpressureController",
    "ChunkReport",
    "ConsoleLagObserver",
    "DrainTimeoutPolicy",
    "KafkaLagObserver",
    "LagObserver",
    "LoadReport",
    "LoaderState",
    "count_data_rows",
    "read_tsv",
    "rows_to_events",
]
