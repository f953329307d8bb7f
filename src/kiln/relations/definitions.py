from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Union

from ..errors import ModelRegistrationError, RelationError
from ..fields import FieldBuilder, FieldDefinition, SchemaDefinition, define_schema

if TYPE_CHECKING:
    from ..models import Model
    from ..registry import ModelRegistry

Target = Union[str, Callable[[], type["Model"]]]
PivotColumns = dict[str, FieldDefinition | FieldBuilder]


class RelationType(str, Enum):
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO = "belongs_to"
    BELONGS_TO_MANY = "belongs_to_many"


class RelationDefinition:
    """
    Metadata for a relation between two models.

    Key names left as None are derived from the model names when the
    relation is loaded; see the factory functions for the defaults.
    """

    def __init__(
        self,
        type: RelationType,
        target: Target,
        foreign_key: str | None = None,
        local_key: str | None = None,
        pivot_table: str | None = None,
        foreign_pivot_key: str | None = None,
        related_pivot_key: str | None = None,
        pivot_columns: PivotColumns | None = None,
    ):
        """
        Initialize a relation definition.

        Args:
            type: Kind of relation.
            target: Name of the related model, or a zero-argument callable
                returning the model class.
            foreign_key: Column holding the reference (on the target for
                has_one/has_many, on the owner for belongs_to).
            local_key: Column the foreign key points at (on the owner for
                has_one/has_many, on the target for belongs_to).
            pivot_table: Join table for belongs_to_many.
            foreign_pivot_key: Pivot column referencing the owner.
            related_pivot_key: Pivot column referencing the target.
            pivot_columns: Extra pivot columns returned with each related
                record as its ``pivot`` mapping.
        """
        if not (isinstance(target, str) or callable(target)):
            raise RelationError("Relation target must be a model name or a callable")
        self.type = RelationType(type)
        self.target = target
        self.foreign_key = foreign_key
        self.local_key = local_key
        self.pivot_table = pivot_table
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.pivot_columns: SchemaDefinition = define_schema(pivot_columns)

    def resolve_target(self, registry: "ModelRegistry") -> type["Model"]:
        """Return the related model class."""
        if isinstance(self.target, str):
            try:
                return registry.get(self.target)
            except ModelRegistrationError:
                raise RelationError(
                    f"Relation target '{self.target}' is not a registered model"
                ) from None
        model = self.target()
        if not hasattr(model, "repository"):
            raise RelationError(f"Relation target {model!r} is not a Kiln model")
        return model

    def target_name(self) -> str:
        if isinstance(self.target, str):
            return self.target
        return self.target().__name__

    def pivot(self, owner_name: str) -> tuple[str, str, str]:
        """Return ``(table, owner_column, target_column)`` for a belongs_to_many relation."""
        owner = owner_name.lower()
        table, related_key = self.pivot_table, self.related_pivot_key
        if table is None or related_key is None:
            target = self.target_name().lower()
            table = table or "_".join(sorted((owner, target)))
            related_key = related_key or f"{target}_id"
        return table, self.foreign_pivot_key or f"{owner}_id", related_key

    def with_pivot(self, **columns: FieldDefinition | FieldBuilder) -> "RelationDefinition":
        """
        Return a copy that also reads ``columns`` from the pivot table.

        Example:
            >>> roles = belongs_to_many("Role").with_pivot(assigned_at=timestamp())
        """
        if self.type is not RelationType.BELONGS_TO_MANY:
            raise RelationError("Pivot columns only apply to belongs_to_many relations")
        return RelationDefinition(
            self.type,
            self.target,
            self.foreign_key,
            self.local_key,
            self.pivot_table,
            self.foreign_pivot_key,
            self.related_pivot_key,
            {**self.pivot_columns, **columns},
        )

    def __repr__(self):
        target = self.target if isinstance(self.target, str) else "<callable>"
        return f"RelationDefinition(type={self.type.value!r}, target={target!r})"


def has_one(
    target: Target, foreign_key: str | None = None, local_key: str | None = None
) -> RelationDefinition:
    """
    One related record whose ``foreign_key`` points back at the owner.

    Defaults: ``foreign_key`` is ``<owner>_id``, ``local_key`` the owner's
    primary key.

    Example:
        >>> relations = {"profile": has_one("Profile")}
    """
    return RelationDefinition(RelationType.HAS_ONE, target, foreign_key, local_key)


def has_many(
    target: Target, foreign_key: str | None = None, local_key: str | None = None
) -> RelationDefinition:
    """
    Every related record whose ``foreign_key`` points back at the owner.

    Example:
        >>> relations = {"posts": has_many(lambda: Post)}
    """
    return RelationDefinition(RelationType.HAS_MANY, target, foreign_key, local_key)


def belongs_to(
    target: Target, foreign_key: str | None = None, owner_key: str | None = None
) -> RelationDefinition:
    """
    The record the owner's ``foreign_key`` column points at.

    Defaults: ``foreign_key`` is ``<relation name>_id``, ``owner_key`` the
    target's primary key.

    Example:
        >>> relations = {"author": belongs_to("User")}
    """
    return RelationDefinition(RelationType.BELONGS_TO, target, foreign_key, owner_key)


def belongs_to_many(
    target: Target,
    pivot_table: str | None = None,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    pivot_columns: PivotColumns | None = None,
) -> RelationDefinition:
    """
    Records linked to the owner through a pivot table.

    Defaults: the pivot table is both model names lower-cased, sorted and
    joined with ``_``; its columns are ``<owner>_id`` and ``<target>_id``.
    Each record loaded through the relation carries the values of
    ``pivot_columns`` for its link in ``record.pivot``.

    Example:
        >>> relations = {"tags": belongs_to_many("Tag")}  # pivot "post_tag"
    """
    return RelationDefinition(
        RelationType.BELONGS_TO_MANY,
        target,
        pivot_table=pivot_table,
        foreign_pivot_key=foreign_pivot_key,
        related_pivot_key=related_pivot_key,
        pivot_columns=pivot_columns,
    )
