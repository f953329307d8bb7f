from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .query import DeleteQuery, InsertQuery, SelectQuery, UpdateQuery


@dataclass(frozen=True)
class InsertResult:
    """Outcome of an insert. ``insert_id`` is None when the driver reports none."""

    insert_id: Any
    num_inserted_rows: int


@dataclass(frozen=True)
class UpdateResult:
    num_updated_rows: int


@dataclass(frozen=True)
class DeleteResult:
    num_deleted_rows: int


@runtime_checkable
class QueryEngine(Protocol):
    """
    The query surface Kiln needs from a database handle.

    A handle is either bound to the root engine or to an open transaction;
    both expose the same methods. ``transaction()`` commits on normal exit
    and rolls back when the body raises.
    """

    @property
    def in_transaction(self) -> bool: ...

    def select_from(self, table: str) -> "SelectQuery": ...

    def insert_into(self, table: str) -> "InsertQuery": ...

    def update_table(self, table: str) -> "UpdateQuery": ...

    def delete_from(self, table: str) -> "DeleteQuery": ...

    def transaction(self) -> AbstractAsyncContextManager["QueryEngine"]: ...
