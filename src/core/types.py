"""
Core types shared across modules.

This module provides base enums used across the core library to keep error
handling decisions consistent between the consumer, the store and the sink.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed later
                   (e.g., connection refused, timeouts, broker unavailable)
        PERMANENT: Failures that will never succeed for the same input
                   (e.g., malformed envelope, constraint violation)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
