"""Debezium change event decoder."""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cdc_engine.common.errors import DecodeError, DecodeFailure, MissingKeyError
from cdc_engine.common.utils import parse_cdc_timestamp
from cdc_engine.decoding.extractors import coerce, extract_field, is_null
from cdc_engine.decoding.schema import EntitySchema, SchemaRegistry, default_registry
from cdc_engine.models import ChangeEvent, EntityKey, Fields, Operation
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


class ChangeEventDecoder:
    """Decodes raw Debezium events for one entity stream into ChangeEvents."""

    def __init__(self, schema: EntitySchema) -> None:
        self.schema = schema

    @property
    def stream(self) -> str:
        return self.schema.name

    def decode(self, raw: Any, sequence: Optional[int] = None) -> ChangeEvent:
        """
        Decode a raw change event.

        Supports:
        - Debezium envelope ('op', 'before', 'after', 'ts_ms', 'source')
        - The envelope wrapped as {'schema': ..., 'payload': ...}
        - Flattened ExtractNewRecordState format ('__op', '__ts_ms', fields at top level)

        Args:
            raw: Event as dict, JSON string or JSON bytes
            sequence: Explicit ordering number (e.g. transport offset); read from the
                event's source position if omitted, 0 when it carries none

        Returns:
            Decoded ChangeEvent

        Raises:
            DecodeError: If the event is malformed, has an unknown operation or no usable image
            MissingKeyError: If the entity key is empty or absent
        """
        envelope = self._load(raw)

        # The operation tag decides which image every later extraction reads.
        if "__op" in envelope:
            op_code = envelope.get("__op")
            business = {k: v for k, v in envelope.items() if not k.startswith("__")}
            operation = self._parse_operation(op_code)
            after = None if operation is Operation.DELETE else business
            before = business if operation is Operation.DELETE else None
            ts_value = envelope.get("__ts_ms")
            position = self._source_position(envelope.get("__sequence"), envelope.get("__lsn"))
        else:
            op_code = envelope.get("op")
            operation = self._parse_operation(op_code)
            after = envelope.get("after")
            before = envelope.get("before")
            source = envelope.get("source") or {}
            if not isinstance(source, dict):
                source = {}
            ts_value = source.get("ts_ms")
            position = self._source_position(source.get("sequence"), source.get("lsn"))
            if ts_value is None:
                ts_value = envelope.get("ts_ms")

        image = before if operation is Operation.DELETE else after
        if not isinstance(image, dict) or not image:
            side = "before" if operation is Operation.DELETE else "after"
            raise DecodeError(
                DecodeFailure.MISSING_IMAGE,
                f"{operation.label} event on {self.stream} has no '{side}' image",
                self.stream,
            )

        entity_key = self.extract_key(image)
        if sequence is None:
            # Redelivered copies must carry the same sequence.
            sequence = position if position is not None else 0
        timestamp = parse_cdc_timestamp(ts_value)
        if timestamp is None:
            logger.debug(f"Event on {self.stream} has no usable timestamp ({ts_value!r}); using 0")
            timestamp = 0

        return ChangeEvent(
            stream=self.stream,
            entity_key=entity_key,
            operation=operation,
            after_image=after if isinstance(after, dict) else None,
            before_image=before if isinstance(before, dict) else None,
            source_timestamp=timestamp,
            sequence=sequence,
        )

    def extract_key(self, image: Dict[str, Any]) -> EntityKey:
        """
        Extract the entity key; scalar for single-column keys, tuple for composite ones.

        Raises:
            MissingKeyError: If any key column is absent, null, empty or unparsable
        """
        parts = []
        for name in self.schema.key_fields:
            value = image.get(self.schema.rule_for(name).source_name)
            if is_null(value) or value == "":
                raise MissingKeyError(f"Key field {name!r} missing on {self.stream}", self.stream)
            try:
                parts.append(coerce(self.schema.rule_for(name), value))
            except (ValueError, TypeError, ArithmeticError) as e:
                raise MissingKeyError(
                    f"Key field {name!r} on {self.stream} is unusable: {e}", self.stream
                ) from e
        return tuple(parts) if self.schema.is_composite else parts[0]

    def extract_payload(self, event: ChangeEvent) -> Fields:
        """Apply every field rule to the event's image."""
        image = event.image or {}
        payload = {rule.name: extract_field(rule, image) for rule in self.schema.fields}
        key_parts = event.entity_key if self.schema.is_composite else (event.entity_key,)
        for name, value in zip(self.schema.key_fields, key_parts):
            payload[name] = value
        return payload

    def decode_batch(
        self, raws: Iterable[Any]
    ) -> Tuple[List[ChangeEvent], List[DecodeError]]:
        """
        Decode a batch, skipping events that fail.

        Args:
            raws: Raw events

        Returns:
            Decoded events and the errors of dropped events
        """
        events: List[ChangeEvent] = []
        errors: List[DecodeError] = []
        for raw in raws:
            try:
                events.append(self.decode(raw))
            except DecodeError as e:
                logger.error(f"Dropping event on {self.stream}: {e}")
                errors.append(e)

        if errors:
            logger.warning(f"Failed to decode {len(errors)}/{len(events) + len(errors)} events")
        return events, errors

    def _load(self, raw: Any) -> Dict[str, Any]:
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError(
                    DecodeFailure.MALFORMED, f"Event is not UTF-8: {e}", self.stream
                ) from e
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise DecodeError(
                    DecodeFailure.MALFORMED, f"Event is not JSON: {e}", self.stream
                ) from e
        if not isinstance(raw, dict) or not raw:
            raise DecodeError(DecodeFailure.MALFORMED, "Event is empty or not an object", self.stream)

        payload = raw.get("payload")
        if isinstance(payload, dict) and ("op" in payload or "__op" in payload):
            return payload
        return raw

    @staticmethod
    def _source_position(*candidates: Any) -> Optional[int]:
        """
        First usable source position among the candidates.

        Accepts integers, numeric strings and Debezium's Postgres
        sequence string ('["<last commit lsn>", "<lsn>"]', last element wins).
        """
        for value in candidates:
            if isinstance(value, str) and value.startswith("["):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError:
                    continue
            if isinstance(value, list):
                value = next((v for v in reversed(value) if v is not None), None)
            if value is None or isinstance(value, bool):
                continue
            try:
                position = int(value)
            except (TypeError, ValueError):
                continue
            if position >= 0:
                return position
        return None

    def _parse_operation(self, op_code: Any) -> Operation:
        operation = Operation.from_code(op_code)
        if operation is None:
            raise DecodeError(
                DecodeFailure.UNKNOWN_OPERATION,
                f"Unknown operation {op_code!r} on {self.stream}",
                self.stream,
            )
        return operation


def decoder_for(
    stream: str,
    registry: Optional[SchemaRegistry] = None,
) -> ChangeEventDecoder:
    """Build a decoder for a registered stream (IMDb schemas by default)."""
    registry = registry or default_registry()
    return ChangeEventDecoder(registry.get(stream))
