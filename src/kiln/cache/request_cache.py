import logging
from typing import Any

logger = logging.getLogger(__name__)

# Reverse-index id for keys that depend on a table as a whole
ANY_RECORD = "*"


class RequestCache:
    """
    Key/value cache that lives for the duration of one execution context.

    Besides the plain store, the cache keeps a reverse index from
    ``table:id`` to every cache key whose value was built from that record,
    so a write can drop exactly the entries it makes stale. Entries never
    expire on their own.

    Not safe for cross-request or global use.
    """

    def __init__(self):
        self._store: dict[str, Any] = {}
        self._reverse_index: dict[str, set[str]] = {}

    @staticmethod
    def _index_key(table: str, id: Any) -> str:
        return f"{table}:{id}"

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for ``key``, or ``default``."""
        return self._store.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``."""
        self._store[key] = value

    def has(self, key: str) -> bool:
        """Return True if ``key`` is cached, even when its value is None."""
        return key in self._store

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        self._store.pop(key, None)

    def clear(self) -> None:
        """Drop every entry and the whole reverse index."""
        self._store.clear()
        self._reverse_index.clear()

    def register_key_for_id(self, table: str, id: Any, key: str) -> None:
        """
        Record that ``key`` depends on the record ``table:id``.

        Args:
            table: Table name.
            id: Primary key value. Normalized with ``str()``.
            key: The cache key to register.
        """
        self._reverse_index.setdefault(self._index_key(table, id), set()).add(key)

    def register_key_for_table(self, table: str, key: str) -> None:
        """Record that ``key`` depends on every row of ``table``."""
        self.register_key_for_id(table, ANY_RECORD, key)

    def invalidate_keys_for_id(self, table: str, id: Any) -> None:
        """
        Remove every cache key registered against ``table:id``.

        Invalidating an id that was never registered is a no-op.
        """
        keys = self._reverse_index.pop(self._index_key(table, id), None)
        if not keys:
            return
        for key in keys:
            self._store.pop(key, None)
        logger.debug("Invalidated %d cache key(s) for %s:%s", len(keys), table, id)

    def invalidate_record(self, table: str, id: Any) -> None:
        """Invalidate a record and the table-wide queries it may appear in."""
        self.invalidate_keys_for_id(table, id)
        self.invalidate_keys_for_id(table, ANY_RECORD)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self):
        return f"<RequestCache entries={len(self._store)} records={len(self._reverse_index)}>"
