"""Build fluent statements and compile them to SQLAlchemy Core"""

import operator
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from .base import DeleteResult, InsertResult, UpdateResult

if TYPE_CHECKING:
    from .sql import SqlEngine


def _in(column, value):
    return column.in_(list(value))


def _not_in(column, value):
    return column.not_in(list(value))


_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _in,
    "not in": _not_in,
    "like": lambda column, value: column.like(value),
    "is": lambda column, value: column.is_(value),
    "is not": lambda column, value: column.is_not(value),
}


class _FilteredQuery:
    """Shared ``where`` handling for select, update and delete statements"""

    def __init__(self, engine: "SqlEngine", table: sa.TableClause):
        self.engine = engine
        self.table = table
        self.where_clause: list[tuple[str, str, Any]] = []

    def where(self, field: str, op: str, value: Any):
        """Add a filter condition to the query

        Args:
            field: Column name.
            op: Comparison operator, e.g. ``"="``, ``"in"`` or ``"like"``.
            value: Right-hand value. Collections are expected for ``in``.

        Returns:
            The current query for chaining.

        Raises:
            ValueError: If ``op`` is not a supported operator.

        Examples:
            >>> query = engine.select_from("users").select_all().where("id", "=", 1)
            >>> query.where_clause
            [('id', '=', 1)]
        """
        if op.lower() not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {op!r}")
        self.where_clause.append((field, op.lower(), value))
        return self

    def _conditions(self) -> list[Any]:
        return [
            _OPERATORS[op](self.engine.column(self.table, field), value)
            for field, op, value in self.where_clause
        ]

    def __repr__(self):
        return f"<{type(self).__name__} table={self.table.name} where={self.where_clause}>"


class SelectQuery(_FilteredQuery):
    """Build and execute a ``SELECT`` against one table

    Examples:
        >>> rows = await (
        ...     engine.select_from("users")
        ...     .select_all()
        ...     .where("active", "=", True)
        ...     .order_by("name")
        ...     .limit(10)
        ...     .execute()
        ... )
    """

    def __init__(self, engine: "SqlEngine", table: sa.TableClause):
        super().__init__(engine, table)
        self.columns: list[str] | None = None
        self.order_by_clause: list[tuple[str, str]] = []
        self._limit: int | None = None
        self._offset: int | None = None

    def select_all(self) -> "SelectQuery":
        """Select every column of the table"""
        self.columns = None
        return self

    def select(self, *columns: str) -> "SelectQuery":
        """Select only the named columns"""
        self.columns = list(columns)
        return self

    def order_by(self, field: str, direction: str = "asc") -> "SelectQuery":
        """Add an ordering clause to the query

        Raises:
            ValueError: If direction is not "asc" or "desc".
        """
        if direction.lower() not in ("asc", "desc"):
            raise ValueError("direction must be 'asc' or 'desc'")
        self.order_by_clause.append((field, direction.lower()))
        return self

    def limit(self, value: int) -> "SelectQuery":
        self._limit = value
        return self

    def offset(self, value: int) -> "SelectQuery":
        self._offset = value
        return self

    def compile(self) -> sa.Select:
        """Return the SQLAlchemy statement for this query"""
        if self.columns is not None:
            stmt = sa.select(*(self.engine.column(self.table, c) for c in self.columns))
            stmt = stmt.select_from(self.table)
        elif isinstance(self.table, sa.Table):
            stmt = sa.select(self.table)
        else:
            stmt = sa.select(sa.literal_column("*")).select_from(self.table)

        conditions = self._conditions()
        if conditions:
            stmt = stmt.where(*conditions)
        for field, direction in self.order_by_clause:
            col = self.engine.column(self.table, field)
            stmt = stmt.order_by(col.desc() if direction == "desc" else col.asc())
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        if self._offset is not None:
            stmt = stmt.offset(self._offset)
        return stmt

    async def execute(self) -> list[dict[str, Any]]:
        """Return every matching row as a dict"""
        return await self.engine.run(
            self.compile(), lambda result: [dict(row) for row in result.mappings()]
        )

    async def execute_take_first(self) -> dict[str, Any] | None:
        """Return the first matching row, or None"""
        old_limit = self._limit
        self._limit = 1
        try:
            rows = await self.execute()
            return rows[0] if rows else None
        finally:
            self._limit = old_limit


def _insert_result(result) -> InsertResult:
    try:
        primary_key = result.inserted_primary_key
    except sa.exc.InvalidRequestError:
        primary_key = None
    if primary_key and primary_key[0] is not None:
        insert_id = primary_key[0]
    else:
        insert_id = getattr(result, "lastrowid", None)
    return InsertResult(insert_id=insert_id, num_inserted_rows=result.rowcount)


class InsertQuery:
    """Build and execute an ``INSERT`` of one or more rows"""

    def __init__(self, engine: "SqlEngine", table: sa.TableClause):
        self.engine = engine
        self.table = table
        self.rows: list[dict[str, Any]] = []

    def values(self, *rows: dict[str, Any]) -> "InsertQuery":
        self.rows.extend(dict(row) for row in rows)
        return self

    async def execute_take_first(self) -> InsertResult:
        """Insert the first queued row and report its generated id"""
        if not self.rows:
            raise ValueError("insert_into() requires values() before execute")
        row = self.rows[0]
        table = self.engine.table_for(self.table.name, row)
        return await self.engine.run(sa.insert(table).values(row), _insert_result)

    async def execute(self) -> list[InsertResult]:
        """Insert every queued row, one statement per row"""
        results = []
        for row in self.rows:
            table = self.engine.table_for(self.table.name, row)
            results.append(
                await self.engine.run(sa.insert(table).values(row), _insert_result)
            )
        return results


class UpdateQuery(_FilteredQuery):
    """Build and execute an ``UPDATE``"""

    def __init__(self, engine: "SqlEngine", table: sa.TableClause):
        super().__init__(engine, table)
        self.changes: dict[str, Any] = {}

    def set(self, changes: dict[str, Any]) -> "UpdateQuery":
        self.changes.update(changes)
        return self

    async def execute(self) -> UpdateResult:
        if not self.changes:
            return UpdateResult(num_updated_rows=0)
        self.table = self.engine.table_for(self.table.name, self.changes)
        stmt = sa.update(self.table).values(self.changes)
        conditions = self._conditions()
        if conditions:
            stmt = stmt.where(*conditions)
        return await self.engine.run(
            stmt, lambda result: UpdateResult(num_updated_rows=result.rowcount)
        )


class DeleteQuery(_FilteredQuery):
    """Build and execute a ``DELETE``"""

    async def execute(self) -> DeleteResult:
        stmt = sa.delete(self.table)
        conditions = self._conditions()
        if conditions:
            stmt = stmt.where(*conditions)
        return await self.engine.run(
            stmt, lambda result: DeleteResult(num_deleted_rows=result.rowcount)
        )
