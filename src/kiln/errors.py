"""Exception types raised by Kiln."""


class KilnError(Exception):
    """Base class for all Kiln errors."""


class ContextMissingError(KilnError, RuntimeError):
    """Raised when the current context is read outside of ``run``/``with_transaction``."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "No ORM context found. Did you forget to wrap your code in orm.run()?"
        )


class BatchLoadError(KilnError):
    """Raised when a batch function does not return one result per key."""


class ModelRegistrationError(KilnError):
    """Raised when a model name is registered twice with different schemas."""


class RelationError(KilnError):
    """Raised for unknown relations or relation targets that cannot be resolved."""


class ValidationError(KilnError):
    """
    Raised when model attributes fail validation.

    Attributes:
        issues: One ``"field: message"`` string per failed check.
        code: Stable error code for programmatic handling.

    Example:
        >>> raise ValidationError(["name: is required", "email: is invalid"])
    """

    code = "VALIDATION_ERROR"

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        super().__init__(f"Validation failed: {', '.join(self.issues)}")
