"""Envelope validation: raw message bytes to a structurally valid Envelope."""

import json
from typing import Any

from core.errors.exceptions import ParseError
from ingestion.schemas.events import Envelope

ENVELOPE_FIELDS = ("eventId", "type", "timestamp", "data")


def decode_json_object(raw: bytes | None) -> dict[str, Any] | None:
    """Best-effort decode of raw bytes to a JSON object, None otherwise."""
    if not raw:
        return None
    try:
        value = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def parse_envelope(raw: bytes | None) -> Envelope:
    """Decode and check the envelope; payload fields are left to the handlers.

    Raises:
        ParseError: Bytes are not UTF-8 JSON, the JSON is not an object,
            an envelope field is missing, or a field has the wrong shape.
    """
    if raw is None:
        raise ParseError("Message has no value")

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError("Message is not valid UTF-8", cause=e) from e

    try:
        value = json.loads(text)
    except ValueError as e:
        raise ParseError(f"Message is not valid JSON: {e}", cause=e) from e

    if not isinstance(value, dict):
        raise ParseError(f"Envelope must be a JSON object, got {type(value).__name__}")

    missing = [name for name in ENVELOPE_FIELDS if name not in value or value[name] is None]
    if missing:
        raise ParseError(
            f"Envelope missing required field(s): {', '.join(missing)}",
            context={"missing_fields": missing},
        )

    for name in ("eventId", "type", "timestamp"):
        if not isinstance(value[name], str):
            raise ParseError(
                f"Envelope field '{name}' must be a string, got {type(value[name]).__name__}",
                context={"field": name},
            )

    if not isinstance(value["data"], dict):
        raise ParseError(
            f"Envelope field 'data' must be an object, got {type(value['data']).__name__}",
            context={"field": "data"},
        )

    return Envelope(
        event_id=value["eventId"],
        type=value["type"],
        timestamp=value["timestamp"],
        data=value["data"],
    )


__all__ = ["ENVELOPE_FIELDS", "decode_json_object", "parse_envelope"]
