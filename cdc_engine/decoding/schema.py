"""
Per-entity field schemas for the change event decoder.

One generic decoder is parameterized by an EntitySchema (field name ->
extraction rule -> default) instead of one hand-written transform per table.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class FieldKind(str, Enum):
    """How a source column is extracted."""

    STRING = "string"
    UINT = "uint"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ARRAY = "array"


_KIND_DEFAULTS = {
    FieldKind.STRING: "",
    FieldKind.UINT: 0,
    FieldKind.INT: 0,
    FieldKind.FLOAT: 0.0,
    FieldKind.BOOL: False,
}


@dataclass(frozen=True)
class FieldRule:
    """Extraction rule for one target field."""

    name: str
    kind: FieldKind = FieldKind.STRING
    source: Optional[str] = None
    default: Any = None
    separator: str = ","

    @property
    def source_name(self) -> str:
        """Column read from the event image."""
        return self.source or self.name

    def default_value(self) -> Any:
        """Documented default for a missing or null value (fresh list for arrays)."""
        if self.kind is FieldKind.ARRAY:
            return list(self.default) if self.default is not None else []
        if self.default is not None:
            return self.default
        return _KIND_DEFAULTS[self.kind]


@dataclass(frozen=True)
class EntitySchema:
    """Field schema of one entity stream (one source table)."""

    name: str
    key_fields: Tuple[str, ...]
    fields: Tuple[FieldRule, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.key_fields:
            raise ValueError(f"Schema {self.name!r} needs at least one key field")
        names = [r.name for r in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Schema {self.name!r} has duplicate field names")

    @property
    def field_names(self) -> List[str]:
        return [r.name for r in self.fields]

    @property
    def is_composite(self) -> bool:
        return len(self.key_fields) > 1

    def rule_for(self, name: str) -> FieldRule:
        """Rule for a field; key fields without an explicit rule are plain strings."""
        for rule in self.fields:
            if rule.name == name:
                return rule
        if name in self.key_fields:
            return FieldRule(name)
        raise KeyError(f"Schema {self.name!r} has no field {name!r}")


class SchemaRegistry:
    """Registry of entity schemas by stream name."""

    def __init__(self, schemas: Optional[Iterable[EntitySchema]] = None) -> None:
        self._schemas: Dict[str, EntitySchema] = {}
        for schema in schemas or ():
            self.register(schema)

    def register(self, schema: EntitySchema) -> None:
        self._schemas[schema.name] = schema

    def get(self, stream: str) -> EntitySchema:
        try:
            return self._schemas[stream]
        except KeyError:
            raise KeyError(
                f"Unknown stream {stream!r}. Known streams: {', '.join(sorted(self._schemas))}"
            ) from None

    def names(self) -> List[str]:
        return list(self._schemas)

    def __contains__(self, stream: object) -> bool:
        return stream in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)


def _s(name: str) -> FieldRule:
    return FieldRule(name, FieldKind.STRING)


def _u(name: str) -> FieldRule:
    return FieldRule(name, FieldKind.UINT)


def _a(name: str) -> FieldRule:
    return FieldRule(name, FieldKind.ARRAY)


IMDB_SCHEMAS: Tuple[EntitySchema, ...] = (
    EntitySchema(
        "title_ratings",
        ("tconst",),
        (_s("tconst"), FieldRule("averageRating", FieldKind.FLOAT), _u("numVotes")),
    ),
    EntitySchema(
        "title_basics",
        ("tconst",),
        (
            _s("tconst"),
            _s("titleType"),
            _s("primaryTitle"),
            _s("originalTitle"),
            _u("isAdult"),
            _u("startYear"),
            _u("endYear"),
            _u("runtimeMinutes"),
            _a("genres"),
        ),
    ),
    EntitySchema(
        "name_basics",
        ("nconst",),
        (
            _s("nconst"),
            _s("primaryName"),
            _u("birthYear"),
            _u("deathYear"),
            _a("primaryProfession"),
            _a("knownForTitles"),
        ),
    ),
    EntitySchema(
        "title_crew",
        ("tconst",),
        (_s("tconst"), _a("directors"), _a("writers")),
    ),
    EntitySchema(
        "title_episode",
        ("tconst",),
        (_s("tconst"), _s("parentTconst"), _u("seasonNumber"), _u("episodeNumber")),
    ),
    EntitySchema(
        "title_akas",
        ("titleId", "ordering"),
        (
            _s("titleId"),
            _u("ordering"),
            _s("title"),
            _s("region"),
            _s("language"),
            _a("types"),
            _a("attributes"),
            _u("isOriginalTitle"),
        ),
    ),
    EntitySchema(
        "title_principals",
        ("tconst", "ordering", "nconst"),
        (
            _s("tconst"),
            _u("ordering"),
            _s("nconst"),
            _s("category"),
            _s("job"),
            _a("characters"),
        ),
    ),
)


def default_registry() -> SchemaRegistry:
    """Registry preloaded with the IMDb entity schemas."""
    return SchemaRegistry(IMDB_SCHEMAS)
