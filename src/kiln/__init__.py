"""
Kiln: request-scoped caching and batching for an async Pydantic ORM.

Kiln combines Pydantic models with SQLAlchemy's async engine. Every request
runs inside an execution context that carries the active database handle, a
request cache and per-tick batch loaders, so call sites simply await
``find_by_id``/``create``/``update``/``delete``.
"""

import logging

from .cache import RequestCache, make_cache_key
from .config import EngineConfig
from .context import (
    ExecutionContext,
    ORMContext,
    create_context,
    get_current_cache,
    get_current_context,
    get_current_handle,
    in_transaction,
    run,
)
from .engine import QueryEngine, SqlEngine, create_engine
from .errors import (
    BatchLoadError,
    ContextMissingError,
    KilnError,
    ModelRegistrationError,
    RelationError,
    ValidationError,
)
from .fields import (
    FieldDefinition,
    FieldModifier,
    FieldType,
    bigint,
    boolean,
    date,
    decimal,
    define_schema,
    floating,
    integer,
    json_,
    string,
    time,
    timestamp,
)
from .loader import BatchLoader
from .models import Model
from .registry import ModelRegistry
from .relations import belongs_to, belongs_to_many, has_many, has_one
from .repository import DataRepository
from .transaction import transaction, with_transaction

# Set up the Kiln logger
_logger = logging.getLogger("kiln")
# Only add a handler if none exists (to avoid duplicate logs)
if not _logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(name)s: %(levelname)s: %(message)s"))
    _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)
    # Prevent propagation to root logger to avoid duplicate messages
    _logger.propagate = False


async def connect(
    url: str | EngineConfig,
    *,
    registry: ModelRegistry | None = None,
    auto_migrate: bool = False,
    echo: bool = False,
) -> SqlEngine:
    """
    Establish a connection to the database.

    Args:
        url: The async database URL (e.g., "sqlite+aiosqlite:///app.db") or an
            ``EngineConfig``. Settings in a config take precedence over the
            keyword arguments.
        registry: Models whose tables the engine should know about.
        auto_migrate: If True, automatically create tables for all registered models.
        echo: Log every SQL statement.

    Returns:
        The root engine, ready to pass to ``run`` or ``create_context``.
    """
    config = url if isinstance(url, EngineConfig) else EngineConfig(
        url=url, auto_migrate=auto_migrate, echo=echo
    )
    metadata = registry.metadata() if registry is not None else None
    engine = create_engine(config.url, metadata=metadata, echo=config.echo)
    if config.auto_migrate:
        await engine.create_tables()
    _logger.debug("Connected to %s", engine.engine.url)
    return engine


__all__ = [
    "connect",
    "create_context",
    "run",
    "transaction",
    "with_transaction",
    "ORMContext",
    "ExecutionContext",
    "get_current_context",
    "get_current_handle",
    "get_current_cache",
    "in_transaction",
    "EngineConfig",
    "QueryEngine",
    "SqlEngine",
    "create_engine",
    "Model",
    "ModelRegistry",
    "DataRepository",
    "RequestCache",
    "BatchLoader",
    "make_cache_key",
    "FieldDefinition",
    "FieldModifier",
    "FieldType",
    "define_schema",
    "string",
    "integer",
    "bigint",
    "floating",
    "decimal",
    "boolean",
    "timestamp",
    "date",
    "time",
    "json_",
    "has_one",
    "has_many",
    "belongs_to",
    "belongs_to_many",
    "KilnError",
    "ContextMissingError",
    "BatchLoadError",
    "ValidationError",
    "ModelRegistrationError",
    "RelationError",
]
