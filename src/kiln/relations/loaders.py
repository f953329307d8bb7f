import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..context import in_transaction
from .definitions import RelationDefinition, RelationType

if TYPE_CHECKING:
    from ..models import Model
    from ..registry import ModelRegistry

RelationLoader = Callable[["Model"], Awaitable[Any]]


def build_relation_loaders(
    owner: type["Model"],
    relations: dict[str, RelationDefinition],
    registry: "ModelRegistry",
) -> dict[str, RelationLoader]:
    """Create one loader closure per relation of ``owner``."""
    return {
        name: _make_loader(owner, name, relation, registry)
        for name, relation in relations.items()
    }


def _make_loader(
    owner: type["Model"],
    name: str,
    relation: RelationDefinition,
    registry: "ModelRegistry",
) -> RelationLoader:
    owner_name = owner.__name__.lower()

    if relation.type is RelationType.HAS_ONE:

        async def load_has_one(instance: "Model"):
            target = relation.resolve_target(registry)
            value = getattr(instance, relation.local_key or owner.primary_key)
            if value is None:
                return None
            return await target.find_by_id(value, relation.foreign_key or f"{owner_name}_id")

        return load_has_one

    if relation.type is RelationType.HAS_MANY:

        async def load_has_many(instance: "Model"):
            target = relation.resolve_target(registry)
            value = getattr(instance, relation.local_key or owner.primary_key)
            if value is None:
                return []
            return await target.find({relation.foreign_key or f"{owner_name}_id": value})

        return load_has_many

    if relation.type is RelationType.BELONGS_TO:

        async def load_belongs_to(instance: "Model"):
            target = relation.resolve_target(registry)
            value = getattr(instance, relation.foreign_key or f"{name}_id")
            if value is None:
                return None
            return await target.find_by_id(value, relation.local_key)

        return load_belongs_to

    async def load_belongs_to_many(instance: "Model"):
        target = relation.resolve_target(registry)
        value = getattr(instance, owner.primary_key)
        if value is None:
            return []
        table, owner_column, target_column = relation.pivot(owner.__name__)
        pivot = registry.pivot_repository(
            table, owner_column, target_column, relation.pivot_columns
        )
        links = await pivot.find({owner_column: value})
        ids = [link[target_column] for link in links]
        if in_transaction():
            # One connection; run a single IN query instead of concurrent reads
            related = await target.find_by_ids(ids)
        else:
            related = await asyncio.gather(*(target.find_by_id(id) for id in ids))
        records = []
        for link, record in zip(links, related):
            if record is None:
                continue
            if relation.pivot_columns:
                record._pivot = {column: link.get(column) for column in relation.pivot_columns}
            records.append(record)
        return records

    return load_belongs_to_many
