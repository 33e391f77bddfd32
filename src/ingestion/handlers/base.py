"""Base handler class, handler registry and type dispatcher."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import pydantic

from core.errors.exceptions import UnsupportedTypeError
from ingestion.handlers.utils import now_datetime, to_validation_error
from ingestion.schemas.entities import EntityRecord
from ingestion.schemas.events import (
    EVENT_PAYLOAD_ADAPTER,
    Envelope,
    EventPayload,
    EventType,
    TimestampPolicy,
)

if TYPE_CHECKING:
    from ingestion.storage.store import EntityStore

logger = logging.getLogger(__name__)


class EventHandler(ABC):
    """Base class for per-type event handlers.

    A handler turns one decoded payload into one entity record and knows which
    store operation persists it.
    """

    event_type: EventType

    def __init__(self, store: "EntityStore"):
        self.store = store

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def build_record(self, payload: EventPayload, processed_at: datetime) -> EntityRecord:
        pass

    @abstractmethod
    async def persist(self, record: EntityRecord) -> None:
        pass


# Module-level handler registry
_HANDLERS: dict[EventType, type[EventHandler]] = {}


def register_handler(cls: type[EventHandler]) -> type[EventHandler]:
    """Decorator to register a handler class for its event_type."""
    if cls.event_type in _HANDLERS:
        logger.warning(
            "Overwriting handler registration",
            extra={
                "event_type": cls.event_type.value,
                "old_handler": _HANDLERS[cls.event_type].__name__,
                "new_handler": cls.__name__,
            },
        )
    _HANDLERS[cls.event_type] = cls
    logger.debug(
        "Registered handler",
        extra={"handler_name": cls.__name__, "event_type": cls.event_type.value},
    )
    return cls


def get_registered_handlers() -> dict[str, str]:
    return {event_type.value: handler.__name__ for event_type, handler in _HANDLERS.items()}


@dataclass(frozen=True)
class Dispatched:
    """A decoded event ready to persist."""

    handler: EventHandler
    record: EntityRecord

    async def persist(self) -> None:
        await self.handler.persist(self.record)


class Dispatcher:
    """Routes envelopes to exactly one handler by their ``type``.

    Decoding uses the discriminated payload union; the envelope type is the tag.
    """

    def __init__(
        self,
        store: "EntityStore",
        timestamp_policy: TimestampPolicy | str = TimestampPolicy.FALLBACK,
        handlers: dict[EventType, type[EventHandler]] | None = None,
    ):
        self.timestamp_policy = TimestampPolicy(timestamp_policy)
        registry = handlers if handlers is not None else _HANDLERS
        self._handlers = {event_type: cls(store) for event_type, cls in registry.items()}

    def handler_for(self, event_type: str) -> EventHandler:
        """Raises UnsupportedTypeError when no handler is registered."""
        parsed = EventType.parse(event_type)
        handler = self._handlers.get(parsed) if parsed is not None else None
        if handler is None:
            raise UnsupportedTypeError(event_type)
        return handler

    def decode(self, envelope: Envelope, processed_at: datetime) -> EventPayload:
        """Validate ``data`` into the typed payload for the envelope's type.

        Raises:
            ValidationError: A payload field is missing or malformed.
        """
        tagged: dict[str, Any] = {**envelope.data, "kind": envelope.type}
        context = {
            "timestamp_policy": self.timestamp_policy,
            "processed_at": processed_at,
            "event_type": envelope.type,
            "event_id": envelope.event_id,
        }
        try:
            return EVENT_PAYLOAD_ADAPTER.validate_python(tagged, context=context)
        except pydantic.ValidationError as e:
            raise to_validation_error(e, envelope.type) from e

    def dispatch(self, envelope: Envelope, processed_at: datetime | None = None) -> Dispatched:
        """Route, decode and build the entity record for one envelope.

        Raises:
            UnsupportedTypeError: Unknown ``type``.
            ValidationError: Payload failed validation.
        """
        handler = self.handler_for(envelope.type)
        processed_at = processed_at or now_datetime()
        payload = self.decode(envelope, processed_at)
        record = handler.build_record(payload, processed_at)
        logger.debug(
            "Dispatched event",
            extra={
                "event_id": envelope.event_id,
                "event_type": envelope.type,
                "handler_name": handler.name,
            },
        )
        return Dispatched(handler=handler, record=record)

    @property
    def event_types(self) -> list[str]:
        return sorted(event_type.value for event_type in self._handlers)


__all__ = [
    "EventHandler",
    "Dispatcher",
    "Dispatched",
    "register_handler",
    "get_registered_handlers",
]
