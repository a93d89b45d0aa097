"""
Error taxonomy for the CDC engine.

Propagation rules:
    - DecodeError is recovered locally by the ingestion path: the single event
      is logged and dropped, never retried.
    - CompactionError stays inside the Compactor; the key is retried on the
      next pass.
    - DrainTimeoutError is only raised when the bulk loader runs with the
      "fail" timeout policy; the default policy logs and proceeds.
    - StoreUnavailableError is fatal and reaches the caller of merge/current_of.
"""

from enum import Enum
from typing import Any, Optional


class CDCEngineError(Exception):
    """Base exception for all engine errors."""


class DecodeFailure(str, Enum):
    """Why a raw change event could not be decoded."""

    MISSING_KEY = "missing_key"
    MISSING_IMAGE = "missing_image"
    UNKNOWN_OPERATION = "unknown_operation"
    MALFORMED = "malformed"


class DecodeError(CDCEngineError):
    """Raw event could not be turned into a ChangeEvent."""

    def __init__(self, reason: DecodeFailure, message: str, stream: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.stream = stream


class MissingKeyError(DecodeError):
    """Mandatory entity key is empty or absent."""

    def __init__(self, message: str, stream: Optional[str] = None) -> None:
        super().__init__(DecodeFailure.MISSING_KEY, message, stream)


class MergeError(CDCEngineError):
    """Reserved: merge is total under valid input."""


class StoreUnavailableError(CDCEngineError):
    """The versioned store is closed or lost."""


class CompactionError(CDCEngineError):
    """Compaction of a single key failed."""

    def __init__(self, message: str, key: Any = None) -> None:
        super().__init__(message)
        self.key = key


class DrainTimeoutError(CDCEngineError):
    """Consumer lag did not drain within the per-chunk wait budget."""

    def __init__(self, message: str, report: Any = None) -> None:
        super().__init__(message)
        self.report = report


class RetentionError(CDCEngineError):
    """Retention could not be validated or applied."""
