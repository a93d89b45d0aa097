"""Change event decoding: per-entity field schemas and the Debezium decoder."""

from cdc_engine.decoding.event_parser import ChangeEventDecoder, decoder_for
from cdc_engine.decoding.schema import (
    EntitySchema,
    FieldKind,
    FieldRule,
    SchemaRegistry,
    default_registry,
)

__all__ = [
    "ChangeEventDecoder",
    "EntitySchema",
    "FieldKind",
    "FieldRule",
    "SchemaRegistry",
    "decoder_for",
    "default_registry",
]
