"""Row-level CRUD with request caching, batching and write tracking"""

import logging
from typing import TYPE_CHECKING, Any

from .cache import ANY_RECORD, RequestCache, make_cache_key
from .context import ExecutionContext, get_current_context
from .engine import DeleteResult, UpdateResult
from .fields import (
    SchemaDefinition,
    coerce_row,
    primary_key_of,
    serialize_row,
    serialize_value,
)
from .loader import BatchLoader

if TYPE_CHECKING:
    from .engine import QueryEngine

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class DataRepository:
    """
    Plain-dict data access for one table.

    Outside a transaction, reads go through the context's ``RequestCache`` and
    same-tick lookups are coalesced by a ``BatchLoader``. Inside a transaction
    every read hits the transactional handle and writes are collected in the
    context's write-set until commit.

    Attributes:
        table_name: Database table name.
        schema: Column definitions used for serialization and coercion.
        primary_key: Primary key column, taken from the schema.

    Examples:
        >>> users = DataRepository("users", schema)
        >>> row = await users.find_by_id(1)
        >>> rows = await users.find({"active": True})
    """

    def __init__(
        self, table_name: str, schema: SchemaDefinition, primary_key: str | None = None
    ):
        self.table_name = table_name
        self.schema = schema
        self.primary_key = primary_key or primary_key_of(schema)

    def _serialize(self, field: str, value: Any) -> Any:
        return serialize_value(value, self.schema.get(field))

    def _register_rows(self, cache: RequestCache, key: str, rows: list[Row]) -> None:
        for row in rows:
            pk = row.get(self.primary_key)
            if pk is not None:
                cache.register_key_for_id(self.table_name, pk, key)

    def _record_write(self, ctx: ExecutionContext, id: Any) -> None:
        if not ctx.record_write(self.table_name, id):
            ctx.cache.invalidate_record(self.table_name, id)

    async def _record_writes(self, ctx: ExecutionContext, id: Any, id_field: str) -> None:
        """Record a write addressed by ``id_field`` under the primary keys it touches."""
        if id_field == self.primary_key:
            self._record_write(ctx, id)
            return
        if self.primary_key not in self.schema:
            # Without a primary key every cached read is registered table-wide
            self._record_write(ctx, ANY_RECORD)
            return
        rows = await (
            ctx.handle.select_from(self.table_name)
            .select(self.primary_key)
            .where(id_field, "=", self._serialize(id_field, id))
            .execute()
        )
        for row in rows:
            self._record_write(ctx, coerce_row(row, self.schema)[self.primary_key])

    async def _select(self, handle: "QueryEngine", where: dict[str, Any]) -> list[Row]:
        query = handle.select_from(self.table_name).select_all()
        for field, value in where.items():
            if value is None:
                query = query.where(field, "is", None)
            elif isinstance(value, (list, tuple, set, frozenset)):
                query = query.where(field, "in", [self._serialize(field, v) for v in value])
            else:
                query = query.where(field, "=", self._serialize(field, value))
        rows = await query.execute()
        return [coerce_row(row, self.schema) for row in rows]

    async def _select_by_ids(
        self, handle: "QueryEngine", ids: list[Any], id_field: str
    ) -> list[Row | None]:
        if not ids:
            return []
        values = list(dict.fromkeys(self._serialize(id_field, id) for id in ids))
        rows = await (
            handle.select_from(self.table_name)
            .select_all()
            .where(id_field, "in", values)
            .execute()
        )
        by_id: dict[str, Row] = {}
        for row in rows:
            row = coerce_row(row, self.schema)
            by_id.setdefault(str(row[id_field]), row)
        return [by_id.get(str(id)) for id in ids]

    async def find(self, where: dict[str, Any] | None = None) -> list[Row]:
        """
        Return every row matching the equality filters in ``where``.

        A ``None`` filter value matches NULL and a list matches any of its
        values. Results are cached per filter set and dropped when any row of
        the table is written.

        Raises:
            ContextMissingError: If called outside an execution context.
        """
        ctx = get_current_context()
        where = dict(where or {})
        if ctx.in_transaction:
            return await self._select(ctx.handle, where)

        key = make_cache_key(self.table_name, "find", where)
        if ctx.cache.has(key):
            return ctx.cache.get(key)

        handle = ctx.handle

        async def load_rows(keys: list[str]) -> list[list[Row]]:
            rows = await self._select(handle, where)
            return [rows for _ in keys]

        loader = ctx.get_batch_loader(key, lambda: BatchLoader(load_rows))
        rows = await loader.load(key)
        ctx.cache.set(key, rows)
        self._register_rows(ctx.cache, key, rows)
        ctx.cache.register_key_for_table(self.table_name, key)
        return rows

    async def find_by_id(self, id: Any, id_field: str | None = None) -> Row | None:
        """
        Return the row whose ``id_field`` equals ``id``, or None.

        Concurrent lookups issued in the same loop iteration are sent to the
        database as one ``IN`` query.

        Args:
            id: Value to look up.
            id_field: Column to match against. Defaults to the primary key.

        Raises:
            ContextMissingError: If called outside an execution context.
        """
        ctx = get_current_context()
        id_field = id_field or self.primary_key
        if ctx.in_transaction:
            row = await (
                ctx.handle.select_from(self.table_name)
                .select_all()
                .where(id_field, "=", self._serialize(id_field, id))
                .execute_take_first()
            )
            return coerce_row(row, self.schema) if row is not None else None

        key = make_cache_key(self.table_name, "find_by_id", id_field, id)
        if ctx.cache.has(key):
            return ctx.cache.get(key)

        handle = ctx.handle
        loader = ctx.get_batch_loader(
            make_cache_key(self.table_name, "find_by_id", id_field),
            lambda: BatchLoader(lambda ids: self._select_by_ids(handle, ids, id_field)),
        )
        row = await loader.load(id)
        ctx.cache.set(key, row)
        if row is not None:
            self._register_rows(ctx.cache, key, [row])
        elif id_field == self.primary_key:
            ctx.cache.register_key_for_id(self.table_name, id, key)
        if id_field != self.primary_key:
            ctx.cache.register_key_for_table(self.table_name, key)
        return row

    async def find_by_ids(
        self, ids: list[Any], id_field: str | None = None
    ) -> list[Row | None]:
        """
        Fetch several rows with one ``IN`` query.

        Returns:
            One entry per requested id, in the same order, with None where no
            row matched.
        """
        ctx = get_current_context()
        return await self._select_by_ids(
            ctx.handle, list(ids), id_field or self.primary_key
        )

    async def create(self, data: dict[str, Any], id_field: str | None = None) -> Row | None:
        """
        Insert a row and return it as read back from the database.

        The primary key is taken from ``data`` when present, otherwise from the
        id the engine generated. The row is read back by ``id_field``; returns
        None if no value for it is available.
        """
        ctx = get_current_context()
        id_field = id_field or self.primary_key
        result = await (
            ctx.handle.insert_into(self.table_name)
            .values(serialize_row(data, self.schema))
            .execute_take_first()
        )
        pk = data.get(self.primary_key)
        if pk is None:
            pk = result.insert_id
        self._record_write(ctx, ANY_RECORD if pk is None else pk)
        id = pk if id_field == self.primary_key else data.get(id_field)
        if id is None:
            return None
        return await self.find_by_id(id, id_field)

    async def update(
        self, id: Any, data: dict[str, Any], id_field: str | None = None
    ) -> UpdateResult:
        """Update the row matching ``id``. Cached reads of it are dropped first."""
        ctx = get_current_context()
        id_field = id_field or self.primary_key
        await self._record_writes(ctx, id, id_field)
        return await (
            ctx.handle.update_table(self.table_name)
            .set(serialize_row(data, self.schema))
            .where(id_field, "=", self._serialize(id_field, id))
            .execute()
        )

    async def delete(self, id: Any, id_field: str | None = None) -> DeleteResult:
        """Delete the row matching ``id``. Cached reads of it are dropped first."""
        ctx = get_current_context()
        id_field = id_field or self.primary_key
        await self._record_writes(ctx, id, id_field)
        return await (
            ctx.handle.delete_from(self.table_name)
            .where(id_field, "=", self._serialize(id_field, id))
            .execute()
        )

    def evict(self, id: Any) -> None:
        """Drop every cached read of record ``id`` from the current context's cache."""
        get_current_context().cache.invalidate_record(self.table_name, id)

    def __repr__(self):
        return f"<DataRepository table={self.table_name!r} primary_key={self.primary_key!r}>"
