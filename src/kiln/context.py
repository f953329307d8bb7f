"""Ambient execution context shared by every call inside ``run``"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from .cache import RequestCache
from .errors import ContextMissingError
from .loader import BatchLoader
from .state import _CURRENT_CONTEXT

if TYPE_CHECKING:
    from .engine import QueryEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ExecutionContext:
    """
    State owned by one logical unit of work.

    Attributes:
        handle: The active query engine, either the root engine or an open
            transaction.
        cache: Request cache. Shared by reference with transaction contexts
            nested inside this one.
        write_set: ``(table, id)`` pairs written inside a transaction, or
            None outside of one.
        batch_loaders: Loaders created during this context, keyed by
            table, operation and argument fingerprint.
        parent: The enclosing context, if any.
    """

    handle: "QueryEngine"
    cache: RequestCache = field(default_factory=RequestCache)
    write_set: set[tuple[str, Any]] | None = None
    batch_loaders: dict[str, BatchLoader] = field(default_factory=dict)
    parent: "ExecutionContext | None" = field(default=None, repr=False)

    @property
    def in_transaction(self) -> bool:
        return self.write_set is not None

    def record_write(self, table: str, id: Any) -> bool:
        """
        Add ``(table, id)`` to the write-set.

        Returns:
            True if the write was deferred to commit, False when there is no
            transaction and the caller has to invalidate on its own.
        """
        if self.write_set is None:
            return False
        self.write_set.add((table, id))
        return True

    def get_batch_loader(
        self, key: str, factory: Callable[[], BatchLoader]
    ) -> BatchLoader:
        """Return the loader registered under ``key``, creating it on first use."""
        loader = self.batch_loaders.get(key)
        if loader is None:
            loader = self.batch_loaders[key] = factory()
        return loader

    def for_transaction(self, handle: "QueryEngine") -> "ExecutionContext":
        """Derive the context used while ``handle`` is an open transaction."""
        return ExecutionContext(
            handle=handle,
            cache=self.cache,
            write_set=set(),
            batch_loaders={},
            parent=self,
        )


def get_current_context() -> ExecutionContext:
    """
    Return the context of the running task.

    Raises:
        ContextMissingError: If called outside ``run``/``with_transaction``.
    """
    ctx = _CURRENT_CONTEXT.get()
    if ctx is None:
        raise ContextMissingError()
    return ctx


def get_current_handle() -> "QueryEngine":
    """Return the active query engine (root or transaction)."""
    return get_current_context().handle


def get_current_cache() -> RequestCache:
    """Return the request cache of the active context."""
    return get_current_context().cache


def in_transaction() -> bool:
    """Return True if the active context belongs to a transaction."""
    return get_current_context().in_transaction


@asynccontextmanager
async def enter(ctx: ExecutionContext) -> AsyncIterator[ExecutionContext]:
    """Make ``ctx`` ambient for the body, restoring the previous one on exit."""
    token = _CURRENT_CONTEXT.set(ctx)
    try:
        yield ctx
    finally:
        _CURRENT_CONTEXT.reset(token)


async def run(
    handle: "QueryEngine",
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    cache: RequestCache | None = None,
    **kwargs: Any,
) -> T:
    """
    Await ``fn(*args, **kwargs)`` inside a fresh execution context.

    The context gets a new cache unless one is supplied, an empty loader
    registry and no write-set.
    """
    ctx = ExecutionContext(
        handle=handle, cache=cache if cache is not None else RequestCache()
    )
    logger.debug("Entering execution context %#x", id(ctx))
    async with enter(ctx):
        return await fn(*args, **kwargs)


class ORMContext:
    """
    Entry point that binds an engine to per-request execution contexts.

    Each ``run``/``scope`` gets a fresh cache and loader registry unless a
    shared cache was passed in.

    Example:
        >>> orm = create_context(engine)
        >>> await orm.run(handle_request, request)
        >>> async with orm.scope():
        ...     user = await User.find_by_id(1)
    """

    def __init__(self, handle: "QueryEngine", cache: RequestCache | None = None):
        self.handle = handle
        self.cache = cache

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        return await run(self.handle, fn, *args, cache=self.cache, **kwargs)

    @asynccontextmanager
    async def scope(self) -> AsyncIterator[ExecutionContext]:
        ctx = ExecutionContext(
            handle=self.handle,
            cache=self.cache if self.cache is not None else RequestCache(),
        )
        async with enter(ctx):
            yield ctx


def create_context(handle: "QueryEngine", cache: RequestCache | None = None) -> ORMContext:
    """Create an ``ORMContext`` for ``handle``."""
    return ORMContext(handle, cache)
