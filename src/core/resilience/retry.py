"""
Exponential backoff with jitter, driven by the error hierarchy.

Two uses in the pipeline:
- startup connectivity checks retry a few times (``STARTUP_RETRY``)
- the Kafka fetch loop retries forever and only borrows the delay
  schedule (``FETCH_BACKOFF.get_delay``)

Per-envelope work is never retried: a failed envelope is dead-lettered.
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps

from core.errors.exceptions import PipelineError, classify_exception
from core.types import ErrorCategory

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Backoff schedule and attempt budget.

    ``max_attempts`` counts the first call; 0 means the caller owns the loop
    and only uses ``get_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    # Never retry errors classified PERMANENT
    respect_permanent: bool = True

    def __post_init__(self):
        # Values may arrive as strings from YAML/env
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        if not isinstance(self.respect_permanent, bool):
            self.respect_permanent = str(self.respect_permanent).lower() in ("true", "1", "yes")

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed), with equal jitter."""
        ceiling = self.base_delay * (self.exponential_base**attempt)
        delay = ceiling / 2 + random.uniform(0, ceiling / 2)
        return min(delay, self.max_delay)

    def category_of(self, error: Exception) -> ErrorCategory:
        if isinstance(error, PipelineError):
            return error.category
        return classify_exception(error)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """True if another attempt is allowed after ``attempt`` (0-indexed) failed."""
        if attempt >= self.max_attempts - 1:
            return False
        category = self.category_of(error)
        if category == ErrorCategory.PERMANENT:
            return not self.respect_permanent
        return category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN)


DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)
STARTUP_RETRY = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=5.0)
# Delay schedule only; the fetch loop retries without an attempt limit
FETCH_BACKOFF = RetryConfig(max_attempts=0, base_delay=0.5, max_delay=30.0)


def with_retry_async(
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
):
    """
    Retry an async callable per ``config``, re-raising the last error.

    Args:
        config: Retry configuration (defaults to DEFAULT_RETRY)
        on_retry: Called before each sleep with (error, attempt, delay)

    Usage:
        @with_retry_async(config=STARTUP_RETRY)
        async def ping():
            ...
    """
    config = config or DEFAULT_RETRY

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    category = config.category_of(e).value
                    if not config.should_retry(e, attempt):
                        logger.warning(
                            "Giving up on %s after %d attempt(s)",
                            func.__name__,
                            attempt + 1,
                            extra={
                                "operation": func.__name__,
                                "attempt": attempt + 1,
                                "max_attempts": config.max_attempts,
                                "error_category": category,
                                "error_message": str(e)[:200],
                            },
                        )
                        raise

                    delay = config.get_delay(attempt)
                    logger.warning(
                        "Retryable error for %s, will retry",
                        func.__name__,
                        extra={
                            "operation": func.__name__,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "error_category": category,
                            "delay_seconds": round(delay, 2),
                            "error_message": str(e)[:200],
                        },
                    )
                    if on_retry:
                        on_retry(e, attempt, delay)
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 0:
                    logger.info(
                        "Retry succeeded for %s after %d attempts",
                        func.__name__,
                        attempt + 1,
                        extra={"operation": func.__name__, "total_attempts": attempt + 1},
                    )
                return result

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "STARTUP_RETRY",
    "FETCH_BACKOFF",
]
