"""Kafka message coordinates carried in a context variable for structured logging."""

from contextvars import ContextVar, Token
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class MessageCoordinates:
    """Where the envelope being handled came from."""

    topic: str = ""
    partition: int = -1
    offset: int = -1
    key: str = ""
    consumer_group: str = ""

    def as_log_fields(self) -> dict[str, Any]:
        if not self.topic:
            return {}

        fields: dict[str, Any] = {
            "message_topic": self.topic,
            "message_partition": self.partition,
            "message_offset": self.offset,
        }
        if self.key:
            fields["message_key"] = self.key
        if self.consumer_group:
            fields["message_consumer_group"] = self.consumer_group
        return fields


_EMPTY = MessageCoordinates()
_coordinates: ContextVar[MessageCoordinates] = ContextVar("message_coordinates", default=_EMPTY)


def _merge(current: MessageCoordinates, **changes: Any) -> MessageCoordinates:
    updates = {name: value for name, value in changes.items() if value is not None}
    return replace(current, **updates) if updates else current


def set_message_context(
    topic: str | None = None,
    partition: int | None = None,
    offset: int | None = None,
    key: str | None = None,
    consumer_group: str | None = None,
) -> None:
    """Update the current message coordinates. None leaves a field unchanged."""
    _coordinates.set(
        _merge(
            _coordinates.get(),
            topic=topic,
            partition=partition,
            offset=offset,
            key=key,
            consumer_group=consumer_group,
        )
    )


def get_message_context() -> dict[str, Any]:
    """
    Log fields for the message in flight.

    Returns:
        message_topic, message_partition and message_offset, plus
        message_key and message_consumer_group when set. Empty when no
        message is in flight.
    """
    return _coordinates.get().as_log_fields()


def clear_message_context() -> None:
    _coordinates.set(_EMPTY)


class MessageLogContext:
    """
    Scope message coordinates to one envelope.

    Usage:
        with MessageLogContext(topic="events", partition=0, offset=12345):
            # All logs in this block carry the message coordinates
            await handle(message)

    The previous coordinates are restored on exit, including when the block raises.
    """

    def __init__(
        self,
        topic: str | None = None,
        partition: int | None = None,
        offset: int | None = None,
        key: str | None = None,
        consumer_group: str | None = None,
    ):
        self._changes = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "consumer_group": consumer_group,
        }
        self._token: Token | None = None

    def __enter__(self) -> "MessageLogContext":
        self._token = _coordinates.set(_merge(_coordinates.get(), **self._changes))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _coordinates.reset(self._token)
            self._token = None
        return False


__all__ = [
    "MessageCoordinates",
    "MessageLogContext",
    "clear_message_context",
    "get_message_context",
    "set_message_context",
]
