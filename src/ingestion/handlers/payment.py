"""
Payment event handler.

Handles: PaymentSettled
"""

from datetime import datetime

from ingestion.handlers.base import EventHandler, register_handler
from ingestion.schemas.entities import Payment
from ingestion.schemas.events import EventType, PaymentSettledPayload


@register_handler
class PaymentSettledHandler(EventHandler):
    """PaymentSettled -> payments row keyed by order_id (no foreign key)."""

    event_type = EventType.PAYMENT_SETTLED

    def build_record(self, payload: PaymentSettledPayload, processed_at: datetime) -> Payment:
        return Payment(
            order_id=payload.order_id,
            status=payload.status,
            amount=payload.amount,
            settled_at=payload.settled_at,
            updated_at=processed_at,
        )

    async def persist(self, record: Payment) -> None:
        await self.store.upsert_payment(record)
