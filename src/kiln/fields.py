"""Define column metadata and convert rows between model and database form."""

from __future__ import annotations

import datetime as _dt
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic_core import PydanticUndefined

from .cache.keys import make_cache_key


class FieldType(str, Enum):
    """Logical column types understood by Kiln."""

    STRING = "string"
    INTEGER = "integer"
    BIGINT = "bigint"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    DATE = "date"
    TIME = "time"
    JSON = "json"


class FieldModifier(str, Enum):
    """Constraints that can be applied to any column."""

    NULLABLE = "nullable"
    UNIQUE = "unique"
    PRIMARY = "primary"
    INDEX = "index"


class FieldDefinition:
    """
    Metadata container for a single column.

    Attributes:
        type: Logical column type.
        modifiers: Set of constraints on the column.
        default: Default value, or ``PydanticUndefined`` when there is none.
        options: Type-specific options, e.g. ``{"mode": "str"}`` for bigint
            or ``{"precision": 10, "scale": 2}`` for decimal.
    """

    def __init__(
        self,
        type: FieldType,
        modifiers: set[FieldModifier] | None = None,
        default: Any = PydanticUndefined,
        options: dict[str, Any] | None = None,
    ):
        self.type = FieldType(type)
        self.modifiers = set(modifiers or ())
        self.default = default
        self.options = dict(options or {})

    @property
    def nullable(self) -> bool:
        return FieldModifier.NULLABLE in self.modifiers

    @property
    def primary_key(self) -> bool:
        return FieldModifier.PRIMARY in self.modifiers

    @property
    def unique(self) -> bool:
        return FieldModifier.UNIQUE in self.modifiers

    @property
    def index(self) -> bool:
        return FieldModifier.INDEX in self.modifiers

    @property
    def has_default(self) -> bool:
        return self.default is not PydanticUndefined

    @property
    def autoincrement(self) -> bool:
        """Integer primary keys are generated by the database."""
        return self.primary_key and self.type in (FieldType.INTEGER, FieldType.BIGINT)

    def to_dict(self) -> dict[str, Any]:
        """Return a plain representation used for schema comparison."""
        return {
            "type": self.type.value,
            "modifiers": sorted(m.value for m in self.modifiers),
            "default": self.default,
            "options": self.options,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldDefinition):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        mods = ",".join(sorted(m.value for m in self.modifiers))
        return f"FieldDefinition(type={self.type.value!r}, modifiers={{{mods}}})"


SchemaDefinition = dict[str, FieldDefinition]


class FieldBuilder:
    """
    Chainable factory for ``FieldDefinition`` objects.

    Fields start out nullable. ``not_null()`` must be called before
    ``primary()`` or ``unique()``.

    Example:
        >>> integer().not_null().primary().build()
        FieldDefinition(type='integer', modifiers={primary})
    """

    def __init__(self, type: FieldType):
        self._field = FieldDefinition(type, {FieldModifier.NULLABLE})
        self._not_null = False

    def primary(self) -> FieldBuilder:
        if not self._not_null:
            raise ValueError("Primary key must be not null")
        self._field.modifiers.add(FieldModifier.PRIMARY)
        return self

    def unique(self) -> FieldBuilder:
        if not self._not_null:
            raise ValueError("Unique fields must be not null")
        self._field.modifiers.add(FieldModifier.UNIQUE)
        return self

    def not_null(self) -> FieldBuilder:
        self._field.modifiers.discard(FieldModifier.NULLABLE)
        self._not_null = True
        return self

    def nullable(self) -> FieldBuilder:
        if self._field.primary_key:
            raise ValueError("Primary key must be not null")
        self._field.modifiers.add(FieldModifier.NULLABLE)
        self._not_null = False
        return self

    def index(self) -> FieldBuilder:
        self._field.modifiers.add(FieldModifier.INDEX)
        return self

    def default(self, value: Any) -> FieldBuilder:
        self._field.default = value
        return self

    def options(self, **options: Any) -> FieldBuilder:
        self._field.options.update(options)
        return self

    def build(self) -> FieldDefinition:
        return self._field


def string() -> FieldBuilder:
    return FieldBuilder(FieldType.STRING)


def integer() -> FieldBuilder:
    return FieldBuilder(FieldType.INTEGER)


def bigint(mode: str = "int") -> FieldBuilder:
    """
    Large integer column.

    Args:
        mode: ``"int"`` stores the value as a database integer, ``"str"``
            stores its decimal text for drivers without 64-bit integers.
            Reads always return ``int``.
    """
    if mode not in ("int", "str"):
        raise ValueError("bigint mode must be 'int' or 'str'")
    return FieldBuilder(FieldType.BIGINT).options(mode=mode)


def floating() -> FieldBuilder:
    return FieldBuilder(FieldType.FLOAT)


def decimal(precision: int, scale: int) -> FieldBuilder:
    return FieldBuilder(FieldType.DECIMAL).options(precision=precision, scale=scale)


def boolean() -> FieldBuilder:
    return FieldBuilder(FieldType.BOOLEAN)


def timestamp() -> FieldBuilder:
    return FieldBuilder(FieldType.TIMESTAMP)


def date() -> FieldBuilder:
    return FieldBuilder(FieldType.DATE)


def time() -> FieldBuilder:
    return FieldBuilder(FieldType.TIME)


def json_() -> FieldBuilder:
    return FieldBuilder(FieldType.JSON)


def define_schema(
    fields: dict[str, FieldDefinition | FieldBuilder] | None = None,
    **kwargs: FieldDefinition | FieldBuilder,
) -> SchemaDefinition:
    """
    Build a schema from field definitions or unfinished builders.

    Example:
        >>> schema = define_schema(
        ...     id=integer().not_null().primary(),
        ...     email=string().not_null().unique(),
        ...     age=integer(),
        ... )
    """
    schema: SchemaDefinition = {}
    for name, value in {**(fields or {}), **kwargs}.items():
        if isinstance(value, FieldBuilder):
            value = value.build()
        if not isinstance(value, FieldDefinition):
            raise TypeError(
                f"Field '{name}' must be a FieldDefinition or FieldBuilder, "
                f"got {type(value).__name__}"
            )
        schema[name] = value
    return schema


def primary_key_of(schema: SchemaDefinition) -> str:
    """Return the primary key column name, defaulting to ``"id"``."""
    for name, field in schema.items():
        if field.primary_key:
            return name
    return "id"


def schema_fingerprint(schema: SchemaDefinition) -> str:
    """Return a string that is equal for structurally equal schemas."""
    return make_cache_key({name: field.to_dict() for name, field in schema.items()})


def serialize_value(value: Any, field: FieldDefinition | None) -> Any:
    """Convert a model value into the form written to the database."""
    if value is None or field is None:
        return value
    if field.type is FieldType.BIGINT:
        number = int(value)
        return str(number) if field.options.get("mode") == "str" else number
    return value


def coerce_value(value: Any, field: FieldDefinition | None) -> Any:
    """Convert a value read from the database into its model form."""
    if value is None or field is None:
        return value
    kind = field.type
    if kind in (FieldType.BIGINT, FieldType.INTEGER) and isinstance(value, str):
        return int(value)
    if kind is FieldType.BOOLEAN and isinstance(value, int):
        return bool(value)
    if kind is FieldType.DECIMAL and not isinstance(value, Decimal):
        return Decimal(str(value))
    if isinstance(value, str):
        if kind is FieldType.TIMESTAMP:
            return _dt.datetime.fromisoformat(value)
        if kind is FieldType.DATE:
            return _dt.date.fromisoformat(value)
        if kind is FieldType.TIME:
            return _dt.time.fromisoformat(value)
    return value


def serialize_row(row: dict[str, Any], schema: SchemaDefinition) -> dict[str, Any]:
    """Serialize a row for insert/update. Keys missing from the schema pass through."""
    return {key: serialize_value(value, schema.get(key)) for key, value in row.items()}


def coerce_row(row: dict[str, Any], schema: SchemaDefinition) -> dict[str, Any]:
    """Coerce a row returned by the engine into model-level values."""
    return {key: coerce_value(value, schema.get(key)) for key, value in row.items()}
