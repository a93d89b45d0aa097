"""Data integrity validators comparing source rows with the active view."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from cdc_engine.common.errors import DecodeError
from cdc_engine.common.utils import calculate_row_checksum
from cdc_engine.decoding.event_parser import ChangeEventDecoder
from cdc_engine.models import Operation
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.store.projector import SoftDeleteProjector
from cdc_engine.validation import ValidationResult, ValidationStatus

logger = get_logger(__name__)


def _count(data: Any) -> int:
    if isinstance(data, int):
        return data
    if isinstance(data, SoftDeleteProjector):
        return data.count()
    return len(data)


class IntegrityValidator(ABC):
    """Base class for integrity validators."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def validate(self, source_data: Any, destination_data: Any) -> ValidationResult:
        """
        Validate data integrity.

        Args:
            source_data: Source rows
            destination_data: Replicated data

        Returns:
            Validation result
        """


class RowCountValidator(IntegrityValidator):
    """Validates row count consistency between source and active view."""

    def __init__(self, tolerance: int = 0) -> None:
        """
        Initialize row count validator.

        Args:
            tolerance: Allowed difference in row counts
        """
        super().__init__("RowCountValidator")
        self.tolerance = tolerance

    def validate(self, source_data: Any, destination_data: Any) -> ValidationResult:
        """
        Validate row counts match within tolerance.

        Both sides may be a count, a sized collection or a SoftDeleteProjector.
        """
        source_count = _count(source_data)
        dest_count = _count(destination_data)
        difference = abs(source_count - dest_count)
        details = {
            "source_count": source_count,
            "destination_count": dest_count,
            "difference": difference,
            "tolerance": self.tolerance,
        }

        if difference <= self.tolerance:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"Row counts match: source={source_count}, dest={dest_count}",
                details=details,
            )
        return ValidationResult(
            validator=self.name,
            status=ValidationStatus.FAILED,
            message=f"Row count mismatch: source={source_count}, dest={dest_count}, diff={difference}",
            details=details,
        )


class ChecksumValidator(IntegrityValidator):
    """
    Compares source rows with the active view by entity key.

    Source rows go through the same field rules as replicated events, so a
    TSV string "7.5" and a replicated 7.5 compare equal.
    """

    def __init__(
        self,
        decoder: ChangeEventDecoder,
        exclude_fields: Optional[List[str]] = None,
        check_extra: bool = True,
    ) -> None:
        """
        Initialize checksum validator.

        Args:
            decoder: Decoder of the stream under validation
            exclude_fields: Fields to exclude from checksum calculation
            check_extra: Fail when the active view holds keys absent from the source
        """
        super().__init__("ChecksumValidator")
        self.decoder = decoder
        self.exclude_fields = exclude_fields or []
        self.check_extra = check_extra

    def validate(
        self, source_data: Iterable[Dict[str, Any]], destination_data: SoftDeleteProjector
    ) -> ValidationResult:
        """Validate every source row against its active version."""
        seen = set()
        missing: List[Any] = []
        mismatches: List[Dict[str, Any]] = []
        invalid_rows = 0

        for row in source_data:
            try:
                event = self.decoder.decode(
                    {"op": Operation.SNAPSHOT.value, "after": row}, sequence=0
                )
            except DecodeError:
                invalid_rows += 1
                continue

            expected = self.decoder.extract_payload(event)
            seen.add(event.entity_key)
            active = destination_data.get(event.entity_key)
            if active is None:
                missing.append(event.entity_key)
                continue

            source_checksum = calculate_row_checksum(expected, self.exclude_fields)
            dest_checksum = calculate_row_checksum(active.payload, self.exclude_fields)
            if source_checksum != dest_checksum:
                mismatches.append(
                    {
                        "key": event.entity_key,
                        "source_checksum": source_checksum,
                        "dest_checksum": dest_checksum,
                    }
                )

        extra = [k for k in destination_data.keys() if k not in seen] if self.check_extra else []

        details = {
            "validated_rows": len(seen),
            "invalid_source_rows": invalid_rows,
            "missing": len(missing),
            "mismatches": len(mismatches),
            "extra": len(extra),
            "first_missing": missing[0] if missing else None,
            "first_mismatch": mismatches[0] if mismatches else None,
        }
        if invalid_rows:
            logger.warning(f"{invalid_rows} source rows on {self.decoder.stream} have no usable key")

        if not missing and not mismatches and not extra:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"All {len(seen)} row checksums match",
                details=details,
            )
        return ValidationResult(
            validator=self.name,
            status=ValidationStatus.FAILED,
            message=(
                f"Found {len(mismatches)} checksum mismatches, {len(missing)} missing "
                f"and {len(extra)} unexpected keys"
            ),
            details=details,
        )
