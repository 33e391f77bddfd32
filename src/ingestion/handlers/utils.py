"""
Shared utilities for event handlers.

Consolidates timing helpers and the mapping from pydantic validation
failures to the pipeline's ValidationError.
"""

import time
from datetime import UTC, datetime

import pydantic

from core.errors.exceptions import ValidationError

_REASONS_BY_TYPE = {
    "missing": "is required",
    "string_type": "must be a string",
    "string_too_short": "must not be empty",
}


def now_datetime() -> datetime:
    return datetime.now(UTC)


def elapsed_ms(start: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - start) * 1000)


def _field_from_loc(loc: tuple, event_type: str) -> str:
    # Tagged-union locations start with the tag, e.g. ("OrderPlaced", "total")
    parts = [str(p) for p in loc]
    if parts and parts[0] == event_type:
        parts = parts[1:]
    return ".".join(parts) if parts else "data"


def to_validation_error(exc: pydantic.ValidationError, event_type: str) -> ValidationError:
    """Convert the first pydantic error into a ValidationError naming the field."""
    errors = exc.errors(include_url=False)
    if not errors:
        return ValidationError("data", event_type, "is invalid")

    first = errors[0]
    field = _field_from_loc(tuple(first.get("loc", ())), event_type)
    reason = _REASONS_BY_TYPE.get(first.get("type", ""), first.get("msg", "is invalid"))
    return ValidationError(field, event_type, reason)
