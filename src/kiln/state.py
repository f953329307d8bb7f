from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .context import ExecutionContext

# Context variable holding the execution context of the current task
_CURRENT_CONTEXT: ContextVar["ExecutionContext | None"] = ContextVar(
    "current_context", default=None
)
