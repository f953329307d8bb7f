from .definitions import (
    RelationDefinition,
    RelationType,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
)
from .loaders import build_relation_loaders

__all__ = [
    "RelationDefinition",
    "RelationType",
    "has_one",
    "has_many",
    "belongs_to",
    "belongs_to_many",
    "build_relation_loaders",
]
