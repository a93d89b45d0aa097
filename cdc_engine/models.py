"""Core record types shared by the decoder, the store and the loaders."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Hashable, Optional, Tuple

from cdc_engine.common.utils import calculate_checksum, ms_to_datetime

EntityKey = Hashable
Fields = Dict[str, Any]


class Operation(str, Enum):
    """Row-level change operation, valued by its Debezium code."""

    CREATE = "c"
    UPDATE = "u"
    SNAPSHOT = "r"
    DELETE = "d"

    @classmethod
    def from_code(cls, code: Any) -> Optional["Operation"]:
        """
        Resolve an operation from a Debezium code or a long name.

        Args:
            code: "c"/"u"/"r"/"d" or create/update/snapshot/read/delete

        Returns:
            Operation, or None if the code is unknown
        """
        if isinstance(code, cls):
            return code
        if not isinstance(code, str):
            return None
        return _OPERATION_ALIASES.get(code.strip().lower())

    @property
    def label(self) -> str:
        """Long lowercase name (create/update/snapshot/delete)."""
        return self.name.lower()


_OPERATION_ALIASES = {
    "c": Operation.CREATE,
    "create": Operation.CREATE,
    "insert": Operation.CREATE,
    "u": Operation.UPDATE,
    "update": Operation.UPDATE,
    "r": Operation.SNAPSHOT,
    "read": Operation.SNAPSHOT,
    "snapshot": Operation.SNAPSHOT,
    "d": Operation.DELETE,
    "delete": Operation.DELETE,
}


@dataclass(frozen=True)
class ChangeEvent:
    """A decoded row-level change event."""

    stream: str
    entity_key: EntityKey
    operation: Operation
    after_image: Optional[Fields]
    before_image: Optional[Fields]
    source_timestamp: int
    sequence: int

    @property
    def image(self) -> Optional[Fields]:
        """The image field extraction reads: before for deletes, after otherwise."""
        if self.operation is Operation.DELETE:
            return self.before_image
        return self.after_image


@dataclass(frozen=True)
class VersionedRecord:
    """
    One physical version of an entity, created per ingested event.

    Versions are immutable; the store only ever appends or (during
    compaction) discards them.
    """

    key: EntityKey
    payload: Fields
    operation: Operation
    event_timestamp: int
    sequence: int
    is_deleted: bool
    ingest_time: datetime
    checksum: str = field(default="", compare=False)

    @classmethod
    def from_event(
        cls, event: ChangeEvent, payload: Fields, ingest_time: Optional[datetime] = None
    ) -> "VersionedRecord":
        """Build the version a change event produces."""
        return cls(
            key=event.entity_key,
            payload=payload,
            operation=event.operation,
            event_timestamp=event.source_timestamp,
            sequence=event.sequence,
            is_deleted=event.operation is Operation.DELETE,
            ingest_time=ingest_time or datetime.now(),
            checksum=calculate_checksum(payload),
        )

    @property
    def order_key(self) -> Tuple[int, int, bool, str]:
        """Last-write-wins comparison key: (timestamp, sequence), then deterministic tie-breaks."""
        return (self.event_timestamp, self.sequence, self.is_deleted, self.checksum)

    @property
    def event_time(self) -> datetime:
        """Event timestamp as a datetime."""
        return ms_to_datetime(self.event_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the version into a row (payload plus CDC bookkeeping columns)."""
        row = dict(self.payload)
        row.update(
            {
                "cdc_operation": self.operation.value,
                "cdc_timestamp": self.event_timestamp,
                "cdc_sequence": self.sequence,
                "is_deleted": self.is_deleted,
                "processing_time": self.ingest_time.isoformat(),
            }
        )
        return row
