"""
Resilience patterns module.

Components:
    - RetryConfig: Exponential backoff configuration
    - @with_retry_async decorator: Retry with jitter
    - Standard configs: DEFAULT_RETRY, STARTUP_RETRY, FETCH_BACKOFF
"""

from .retry import (
    DEFAULT_RETRY,
    FETCH_BACKOFF,
    STARTUP_RETRY,
    RetryConfig,
    with_retry_async,
)

__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "STARTUP_RETRY",
    "FETCH_BACKOFF",
]
