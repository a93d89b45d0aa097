"""Common utility functions."""

import hashlib
import json
from datetime import datetime
from itertools import islice
from typing import Any, Dict, Iterable, Iterator, List, Optional


def calculate_checksum(data: Dict[str, Any]) -> str:
    """Calculate MD5 checksum of data dictionary."""
    # Sort keys for consistent hashing
    sorted_data = json.dumps(data, sort_keys=True, default=str)
    return hashlib.md5(sorted_data.encode()).hexdigest()


def calculate_row_checksum(row: Dict[str, Any], exclude_fields: Optional[List[str]] = None) -> str:
    """
    Calculate checksum for a row, excluding specified fields.

    Args:
        row: Row data as dictionary
        exclude_fields: Fields to exclude from checksum (e.g., CDC bookkeeping columns)

    Returns:
        MD5 checksum hex string
    """
    exclude = exclude_fields or []
    filtered_row = {k: v for k, v in row.items() if k not in exclude}
    return calculate_checksum(filtered_row)


def parse_cdc_timestamp(ts_value: Any) -> Optional[int]:
    """
    Parse a CDC timestamp into epoch milliseconds.

    Args:
        ts_value: Timestamp value (epoch ms int/float, numeric string, datetime or ISO string)

    Returns:
        Epoch milliseconds, or None if the value cannot be interpreted
    """
    if ts_value is None or isinstance(ts_value, bool):
        return None

    if isinstance(ts_value, datetime):
        return int(ts_value.timestamp() * 1000)

    if isinstance(ts_value, (int, float)):
        return int(ts_value) if ts_value >= 0 else None

    if isinstance(ts_value, str):
        text = ts_value.strip()
        if text.isdigit():
            return int(text)
        try:
            return int(datetime.fromisoformat(text).timestamp() * 1000)
        except ValueError:
            return None

    return None


def ms_to_datetime(ts_ms: int) -> datetime:
    """Convert epoch milliseconds to a datetime."""
    return datetime.fromtimestamp(ts_ms / 1000.0)


def chunked(iterable: Iterable[Any], size: int) -> Iterator[List[Any]]:
    """
    Split an iterable into sequential lists of at most ``size`` items.

    Source order is preserved and the input is consumed lazily, so generators
    and file readers are never materialized in full.

    Raises:
        ValueError: If size is not positive
    """
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")

    iterator = iter(iterable)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def format_count(value: Optional[int]) -> str:
    """Format a count with thousands separators."""
    if value is None:
        return "unknown"
    return f"{value:,}"


def format_duration(seconds: float) -> str:
    """Format a duration as minutes and seconds."""
    minutes, secs = divmod(int(seconds), 60)
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{seconds:.1f}s"
