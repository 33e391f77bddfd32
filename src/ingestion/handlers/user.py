"""
User event handler.

Handles: UserCreated
"""

from datetime import datetime

from ingestion.handlers.base import EventHandler, register_handler
from ingestion.schemas.entities import User
from ingestion.schemas.events import EventType, UserCreatedPayload


@register_handler
class UserCreatedHandler(EventHandler):
    """UserCreated -> users row (last-write-wins on name, email)."""

    event_type = EventType.USER_CREATED

    def build_record(self, payload: UserCreatedPayload, processed_at: datetime) -> User:
        return User(
            user_id=payload.user_id,
            name=payload.name,
            email=payload.email,
            created_at=payload.created_at,
            updated_at=processed_at,
        )

    async def persist(self, record: User) -> None:
        await self.store.upsert_user(record)
