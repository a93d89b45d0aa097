"""Validation of consumer lag and of the active view against source data."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class ValidationStatus(str, Enum):
    """Validation status enum."""

    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


@dataclass
class ValidationResult:
    """Result of a single validation check."""

    validator: str
    status: ValidationStatus
    message: str
    details: Optional[Dict[str, Any]] = None
    checked_at: datetime = field(default_factory=datetime.now)

    @property
    def passed(self) -> bool:
        return self.status is ValidationStatus.PASSED


@dataclass
class ValidationReport:
    """Checks run against one stream, with an overall verdict."""

    stream: str
    results: List[ValidationResult]
    overall_status: ValidationStatus
    started_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_results(
        cls,
        stream: str,
        results: Iterable[ValidationResult],
        started_at: Optional[datetime] = None,
    ) -> "ValidationReport":
        """
        Build a completed report.

        The verdict is FAILED if any check failed, WARNING if any warned,
        SKIPPED if every check was skipped and PASSED otherwise.
        """
        results = list(results)
        statuses = {r.status for r in results}
        if ValidationStatus.FAILED in statuses:
            overall = ValidationStatus.FAILED
        elif ValidationStatus.WARNING in statuses:
            overall = ValidationStatus.WARNING
        elif results and statuses == {ValidationStatus.SKIPPED}:
            overall = ValidationStatus.SKIPPED
        else:
            overall = ValidationStatus.PASSED

        now = datetime.now()
        return cls(
            stream=stream,
            results=results,
            overall_status=overall,
            started_at=started_at or now,
            completed_at=now,
        )

    def count(self, status: ValidationStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def failed_count(self) -> int:
        return self.count(ValidationStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary."""
        return {
            "stream": self.stream,
            "overall_status": self.overall_status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": {"total": len(self.results), **{s.value: self.count(s) for s in ValidationStatus}},
            "results": [
                {
                    "validator": r.validator,
                    "status": r.status.value,
                    "message": r.message,
                    "details": r.details,
                    "checked_at": r.checked_at.isoformat(),
                }
                for r in self.results
            ],
        }


__all__ = ["ValidationStatus", "ValidationResult", "ValidationReport"]
