import logging
from collections.abc import Iterator
from typing import Any

import sqlalchemy as sa
from pydantic import create_model

from .errors import ModelRegistrationError
from .fields import (
    FieldBuilder,
    FieldDefinition,
    SchemaDefinition,
    define_schema,
    integer,
    primary_key_of,
    schema_fingerprint,
)
from .metadata import build_metadata, pivot_table
from .models import Model, Validator, field_annotation
from .relations import RelationDefinition, RelationType, build_relation_loaders
from .repository import DataRepository

logger = logging.getLogger(__name__)


def default_table_name(name: str) -> str:
    """``"User"`` becomes ``"users"``; names already ending in ``s`` are kept."""
    lowered = name.lower()
    return lowered if lowered.endswith("s") else f"{lowered}s"


class ModelRegistry:
    """
    Named collection of model classes.

    Defining a model under a name that is already registered returns the
    existing class when the schema is identical and raises
    ``ModelRegistrationError`` otherwise.

    Example:
        >>> registry = ModelRegistry()
        >>> User = registry.define(
        ...     "User",
        ...     {"id": integer().not_null().primary(), "name": string().not_null()},
        ...     validators={"name": Field(min_length=2)},
        ...     relations={"posts": has_many("Post")},
        ... )
    """

    def __init__(self):
        self._models: dict[str, type[Model]] = {}
        self._pivots: dict[str, DataRepository] = {}

    def define(
        self,
        name: str,
        schema: dict[str, FieldDefinition | FieldBuilder],
        *,
        validators: dict[str, Validator] | None = None,
        relations: dict[str, RelationDefinition] | None = None,
        table_name: str | None = None,
    ) -> type[Model]:
        """
        Generate and register a model class.

        Args:
            name: Class name, also the key used by relations.
            schema: Column definitions (builders are finalised here).
            validators: Per-column callables, run after type validation, or
                ``pydantic.Field(...)`` constraints.
            relations: Relation definitions keyed by accessor name.
            table_name: Database table. Defaults to the pluralised name.

        Raises:
            ModelRegistrationError: If ``name`` is registered with a different
                schema, or a validator names an unknown column.
        """
        schema = define_schema(schema)
        existing = self._models.get(name)
        if existing is not None:
            if schema_fingerprint(existing.kiln_schema) != schema_fingerprint(schema):
                raise ModelRegistrationError(
                    f"Model registration conflict: '{name}' already exists "
                    f"with a different schema."
                )
            return existing

        validators = validators or {}
        unknown = set(validators) - set(schema)
        if unknown:
            raise ModelRegistrationError(
                f"Validators for unknown field(s) on '{name}': {', '.join(sorted(unknown))}"
            )

        fields: dict[str, Any] = {
            column: field_annotation(field, validators.get(column))
            for column, field in schema.items()
        }
        cls = create_model(name, __base__=Model, **fields)

        relations = dict(relations or {})
        cls.kiln_schema = schema
        cls.table_name = table_name or default_table_name(name)
        cls.primary_key = primary_key_of(schema)
        cls.repository = DataRepository(cls.table_name, schema, cls.primary_key)
        cls.kiln_registry = self
        cls.kiln_relations = relations
        cls.relation_loaders = build_relation_loaders(cls, relations, self)

        self._models[name] = cls
        logger.debug("Registered model %s (table %s)", name, cls.table_name)
        return cls

    def get(self, name: str) -> type[Model]:
        try:
            return self._models[name]
        except KeyError:
            raise ModelRegistrationError(f"Model '{name}' is not registered") from None

    def pivot_repository(
        self,
        table: str,
        owner_column: str,
        target_column: str,
        pivot_columns: SchemaDefinition | None = None,
    ) -> DataRepository:
        """Return the repository for a many-to-many join table."""
        repository = self._pivots.get(table)
        if repository is None:
            schema = define_schema(
                {
                    owner_column: integer().not_null().index(),
                    target_column: integer().not_null().index(),
                    **(pivot_columns or {}),
                }
            )
            repository = self._pivots[table] = DataRepository(table, schema)
        return repository

    def metadata(self, metadata: sa.MetaData | None = None) -> sa.MetaData:
        """
        Generate SQLAlchemy metadata for every registered model and pivot table.

        Relation targets are resolved here, so every related model must be
        defined before this is called.
        """
        metadata = build_metadata(
            {cls.table_name: cls.kiln_schema for cls in self._models.values()},
            metadata,
        )
        for cls in self._models.values():
            for relation in cls.kiln_relations.values():
                if relation.type is RelationType.BELONGS_TO_MANY:
                    table, owner_column, target_column = relation.pivot(cls.__name__)
                    pivot_table(
                        metadata, table, owner_column, target_column, relation.pivot_columns
                    )
        return metadata

    def clear(self) -> None:
        self._models.clear()
        self._pivots.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[type[Model]]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)
