import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .query import DeleteQuery, InsertQuery, SelectQuery, UpdateQuery

logger = logging.getLogger(__name__)

R = TypeVar("R")


class SqlEngine:
    """
    Query engine backed by a SQLAlchemy ``AsyncEngine``.

    A root engine runs every statement in its own short transaction. A bound
    engine (returned by ``transaction()``) runs statements on one open
    connection until the transaction block exits.

    Attributes:
        engine: The SQLAlchemy async engine.
        metadata: Table definitions used to type columns. Tables missing from
            it are addressed through lightweight ``sqlalchemy.table()`` clauses.
        connection: The open connection for a bound engine, else None.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        metadata: sa.MetaData | None = None,
        connection: AsyncConnection | None = None,
    ):
        self.engine = engine
        self.metadata = metadata if metadata is not None else sa.MetaData()
        self.connection = connection

    @property
    def in_transaction(self) -> bool:
        return self.connection is not None

    def table(self, name: str) -> sa.TableClause:
        table = self.metadata.tables.get(name)
        return table if table is not None else sa.table(name)

    def table_for(self, name: str, row: dict[str, Any]) -> sa.TableClause:
        """Return the table for ``name``, declaring ``row``'s columns if it is unknown."""
        table = self.metadata.tables.get(name)
        if table is not None:
            return table
        return sa.table(name, *(sa.column(key) for key in row))

    def column(self, table: sa.TableClause, name: str) -> sa.ColumnElement:
        if name in table.c:
            return table.c[name]
        if isinstance(table, sa.Table):
            raise ValueError(f"Unknown column '{name}' on table '{table.name}'")
        return sa.column(name)

    def select_from(self, table: str) -> SelectQuery:
        return SelectQuery(self, self.table(table))

    def insert_into(self, table: str) -> InsertQuery:
        return InsertQuery(self, self.table(table))

    def update_table(self, table: str) -> UpdateQuery:
        return UpdateQuery(self, self.table(table))

    def delete_from(self, table: str) -> DeleteQuery:
        return DeleteQuery(self, self.table(table))

    def bind(self, connection: AsyncConnection) -> "SqlEngine":
        return SqlEngine(self.engine, self.metadata, connection)

    async def run(
        self, statement: sa.Executable, extract: Callable[[CursorResult], R]
    ) -> R:
        """Execute ``statement`` and pass the result to ``extract`` while it is open."""
        if self.connection is not None:
            return extract(await self.connection.execute(statement))
        async with self.engine.begin() as conn:
            return extract(await conn.execute(statement))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqlEngine"]:
        """
        Open a transaction and yield an engine bound to it.

        Commits when the block exits normally and rolls back when it raises.
        On an engine that is already bound this opens a savepoint instead.
        """
        if self.connection is None:
            async with self.engine.begin() as conn:
                logger.debug("BEGIN")
                yield self.bind(conn)
        else:
            async with self.connection.begin_nested():
                logger.debug("SAVEPOINT")
                yield self

    async def create_tables(self) -> None:
        """Create every table in ``metadata`` that does not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)

    async def drop_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.drop_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    def __repr__(self):
        state = "transaction" if self.connection is not None else "root"
        return f"<SqlEngine url={self.engine.url!r} {state}>"


def _enable_sqlite_transactions(engine: AsyncEngine) -> None:
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT and rollback behave.
    @sa.event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @sa.event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine(
    url: str | sa.URL, *, metadata: sa.MetaData | None = None, echo: bool = False
) -> SqlEngine:
    """
    Create a root ``SqlEngine`` for an async database URL.

    Example:
        >>> engine = create_engine("sqlite+aiosqlite:///app.db")
    """
    async_engine = create_async_engine(url, echo=echo)
    if async_engine.url.get_backend_name() == "sqlite":
        _enable_sqlite_transactions(async_engine)
    return SqlEngine(async_engine, metadata)
