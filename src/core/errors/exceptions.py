"""
Unified exception hierarchy for the ingestion pipeline.

Provides typed exceptions with a category so the consumer loop can decide,
per envelope, between dead-lettering and logging-and-continuing.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Envelope and payload errors (terminal, dead-lettered)
# =============================================================================


class ParseError(PermanentError):
    """Raw message bytes are not a structurally valid event envelope."""

    pass


class ValidationError(PermanentError):
    """A per-type payload field is missing or malformed."""

    def __init__(
        self,
        field: str,
        event_type: str,
        reason: str = "is required",
        cause: Exception | None = None,
    ):
        message = f"{event_type}: field '{field}' {reason}"
        super().__init__(
            message, cause, {"field": field, "event_type": event_type}
        )
        self.field = field
        self.event_type = event_type
        self.reason = reason


class UnsupportedTypeError(PermanentError):
    """Envelope declares a type with no registered handler."""

    def __init__(self, event_type: str):
        super().__init__(
            f"Unsupported event type: {event_type!r}",
            context={"event_type": event_type},
        )
        self.event_type = event_type


# =============================================================================
# Collaborator errors
# =============================================================================


class PersistenceError(PipelineError):
    """
    Relational store failure.

    Connectivity problems are TRANSIENT; constraint violations (foreign key,
    check, not-null) are PERMANENT. Neither is retried by the consumer loop.
    """

    category = ErrorCategory.TRANSIENT

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        cause: Exception | None = None,
        permanent: bool = False,
    ):
        super().__init__(message, cause, {"operation": operation})
        self.operation = operation
        if permanent:
            self.category = ErrorCategory.PERMANENT


class SinkError(TransientError):
    """Dead-letter sink could not record a failure."""

    pass


class CommitError(TransientError):
    """Offset commit was rejected by the broker."""

    pass


# =============================================================================
# Error Classification Utilities
# =============================================================================

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "timeout",
        "timed out",
        "connection",
        "broken pipe",
        "temporarily unavailable",
        "service unavailable",
        "no route to host",
        "network unreachable",
        "name resolution",
    }
)


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, PipelineError):
        return exc.category

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorCategory.TRANSIENT

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()
    if any(m in exc_type or m in exc_str for m in TRANSIENT_ERROR_MARKERS):
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN

