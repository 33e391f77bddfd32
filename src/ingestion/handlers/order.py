"""
Order event handler.

Handles: OrderPlaced
"""

from datetime import datetime

from ingestion.handlers.base import EventHandler, register_handler
from ingestion.schemas.entities import ORDER_STATUS_PLACED, Order
from ingestion.schemas.events import EventType, OrderPlacedPayload


@register_handler
class OrderPlacedHandler(EventHandler):
    """
    OrderPlaced -> orders row.

    The order's user must already exist; the foreign key is enforced by the
    store and a missing user surfaces as a permanent PersistenceError.
    """

    event_type = EventType.ORDER_PLACED

    def build_record(self, payload: OrderPlacedPayload, processed_at: datetime) -> Order:
        return Order(
            order_id=payload.order_id,
            user_id=payload.user_id,
            total=payload.total,
            status=ORDER_STATUS_PLACED,
            created_at=payload.created_at,
            updated_at=processed_at,
        )

    async def persist(self, record: Order) -> None:
        await self.store.upsert_order(record)
