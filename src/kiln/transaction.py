import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from .context import ExecutionContext, enter, get_current_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def transaction() -> AsyncIterator[ExecutionContext]:
    """
    Asynchronous context manager for database transactions.

    The body runs against the transactional handle with its own write-set
    and an empty loader registry; reads bypass the request cache. Once the
    transaction commits, every written record is invalidated in the shared
    cache. On error the engine rolls back and nothing is invalidated.

    Inside another transaction this opens a savepoint and hands its writes
    to the outer transaction, which invalidates them when it commits.

    Usage:
        async with kiln.transaction():
            await User.create(username="alice")
            ...
    """
    outer = get_current_context()
    try:
        async with outer.handle.transaction() as trx:
            inner = outer.for_transaction(trx)
            async with enter(inner):
                yield inner
    except Exception:
        logger.debug("Transaction rolled back")
        raise

    if outer.in_transaction:
        outer.write_set.update(inner.write_set)
        return

    logger.debug("Transaction committed; invalidating %d record(s)", len(inner.write_set))
    for table, id in inner.write_set:
        outer.cache.invalidate_record(table, id)


async def with_transaction(
    fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
) -> T:
    """
    Await ``fn(*args, **kwargs)`` inside a transaction and return its result.

    Any exception raised by ``fn`` rolls the transaction back and is
    re-raised unchanged.
    """
    async with transaction():
        return await fn(*args, **kwargs)
