"""
Pytest configuration and shared fixtures for CDC engine tests.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pytest

from cdc_engine.decoding import ChangeEventDecoder, EntitySchema, FieldKind, FieldRule
from cdc_engine.store import VersionedStore


class FakeClock:
    """Controllable clock for both monotonic seconds and datetimes."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)
        self.seconds = 0.0
        self.sleeps = []

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self.seconds += seconds
        self.now += timedelta(seconds=seconds)


class StaticLag:
    """Lag observer replaying a scripted sequence of readings (last one repeats)."""

    def __init__(self, *readings: Optional[int]) -> None:
        self.readings = list(readings)
        self.calls = 0

    def outstanding(self, stream: str) -> Optional[int]:
        index = min(self.calls, len(self.readings) - 1)
        self.calls += 1
        return self.readings[index]


def envelope(
    key: Any,
    op: str = "c",
    ts: Optional[int] = 100,
    key_field: str = "key",
    seq: Optional[int] = None,
    **fields: Any,
) -> Dict[str, Any]:
    """Debezium envelope for the ratings test schema."""
    image = {key_field: key, **fields}
    event: Dict[str, Any] = {
        "op": op,
        "before": image if op == "d" else None,
        "after": None if op == "d" else image,
        "source": {"table": "ratings"},
    }
    if ts is not None:
        event["source"]["ts_ms"] = ts
    if seq is not None:
        event["source"]["sequence"] = seq
    return event


@pytest.fixture
def ratings_schema():
    """Single-key schema with a float, an unsigned int and a list field."""
    return EntitySchema(
        "ratings",
        ("key",),
        (
            FieldRule("key"),
            FieldRule("rating", FieldKind.FLOAT),
            FieldRule("votes", FieldKind.UINT),
            FieldRule("genres", FieldKind.ARRAY),
        ),
    )


@pytest.fixture
def decoder(ratings_schema):
    return ChangeEventDecoder(ratings_schema)


@pytest.fixture
def store():
    return VersionedStore("ratings")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_event():
    """Factory for ratings envelopes."""
    return envelope


@pytest.fixture
def static_lag():
    """Factory for scripted lag observers."""
    return StaticLag
