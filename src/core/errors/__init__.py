"""
Error classification and exception hierarchy.

Provides:
- PipelineError hierarchy for typed exceptions
- Terminal per-envelope errors (parse, validation, unsupported type)
- Collaborator errors (persistence, sink, commit)
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    CommitError,
    ErrorCategory,
    ParseError,
    PermanentError,
    PersistenceError,
    PipelineError,
    SinkError,
    TransientError,
    UnsupportedTypeError,
    ValidationError,
    classify_exception,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "TransientError",
    "PermanentError",
    # Per-envelope errors
    "ParseError",
    "ValidationError",
    "UnsupportedTypeError",
    # Collaborator errors
    "PersistenceError",
    "SinkError",
    "CommitError",
    # Classification utilities
    "classify_exception",
]
