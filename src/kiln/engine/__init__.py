"""Query engine used by repositories: fluent statements over SQLAlchemy Core"""

from .base import DeleteResult, InsertResult, QueryEngine, UpdateResult
from .query import DeleteQuery, InsertQuery, SelectQuery, UpdateQuery
from .sql import SqlEngine, create_engine

__all__ = [
    "QueryEngine",
    "SqlEngine",
    "create_engine",
    "SelectQuery",
    "InsertQuery",
    "UpdateQuery",
    "DeleteQuery",
    "InsertResult",
    "UpdateResult",
    "DeleteResult",
]
