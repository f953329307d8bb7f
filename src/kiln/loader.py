"""Coalesce same-tick lookups into a single batch call"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Sequence
from typing import Generic, TypeVar

from .errors import BatchLoadError

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

BatchFn = Callable[[list[K]], Awaitable[Sequence[V | None]]]


class BatchLoader(Generic[K, V]):
    """Batch and deduplicate loads issued during the same loop iteration

    Every ``load`` queued before the scheduled dispatch runs is sent to the
    batch function in one call. Keys are deduplicated and passed in the order
    they were first requested; the batch function must return one result per
    key, in the same order, with ``None`` standing in for "not found".

    Attributes:
        batch_fn: Coroutine function called with the list of distinct keys.

    Examples:
        >>> loader = BatchLoader(lambda ids: repo.find_by_ids(ids))
        >>> user = await loader.load(1)
        >>> users = await loader.load_many([1, 2, 3])
    """

    def __init__(self, batch_fn: BatchFn):
        """Initialize a loader around a batch function

        Args:
            batch_fn: Coroutine function receiving ``list[K]`` and returning a
                sequence of results aligned with it.
        """
        self.batch_fn = batch_fn
        self._queue: dict[K, list[asyncio.Future]] = {}
        self._scheduled = False
        self._tasks: set[asyncio.Task] = set()

    def load(self, key: K) -> "asyncio.Future[V | None]":
        """Queue a single key and return a future for its result

        The first load of a cycle schedules a dispatch for the next loop
        iteration; later loads in the same iteration join that dispatch.

        Args:
            key: Hashable key to resolve.

        Returns:
            A future resolving to the batch result for ``key``.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._queue.setdefault(key, []).append(future)
        if not self._scheduled:
            self._scheduled = True
            loop.call_soon(self._dispatch)
        return future

    async def load_many(self, keys: Sequence[K]) -> list[V | None]:
        """Load several keys in one batch and return results in key order"""
        return list(await asyncio.gather(*(self.load(key) for key in keys)))

    @property
    def pending(self) -> int:
        """Number of distinct keys waiting for the next dispatch"""
        return len(self._queue)

    def _dispatch(self) -> None:
        self._scheduled = False
        queue, self._queue = self._queue, {}
        if not queue:
            return
        task = asyncio.ensure_future(self._run_batch(queue))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_batch(self, queue: dict[K, list[asyncio.Future]]) -> None:
        keys = list(queue)
        logger.debug("Dispatching batch of %d key(s)", len(keys))
        try:
            results = list(await self.batch_fn(keys))
            if len(results) != len(keys):
                raise BatchLoadError(
                    f"Batch function returned {len(results)} result(s) "
                    f"for {len(keys)} key(s)"
                )
        except asyncio.CancelledError:
            for waiters in queue.values():
                for future in waiters:
                    future.cancel()
            raise
        except Exception as exc:
            for waiters in queue.values():
                for future in waiters:
                    if not future.done():
                        future.set_exception(exc)
            return

        for key, value in zip(keys, results):
            for future in queue[key]:
                if not future.done():
                    future.set_result(value)

    def __repr__(self):
        return f"<BatchLoader pending={len(self._queue)} scheduled={self._scheduled}>"
