"""
Inventory event handler.

Handles: InventoryAdjusted
"""

from datetime import datetime

from ingestion.handlers.base import EventHandler, register_handler
from ingestion.schemas.entities import InventoryAdjustment
from ingestion.schemas.events import EventType, InventoryAdjustedPayload


@register_handler
class InventoryAdjustedHandler(EventHandler):
    """
    InventoryAdjusted -> additive delta on the inventory row.

    Not idempotent: a redelivered adjustment is applied again.
    """

    event_type = EventType.INVENTORY_ADJUSTED

    def build_record(
        self, payload: InventoryAdjustedPayload, processed_at: datetime
    ) -> InventoryAdjustment:
        return InventoryAdjustment(
            sku=payload.sku,
            delta=payload.delta,
            adjusted_at=payload.adjusted_at,
            reason=payload.reason,
        )

    async def persist(self, record: InventoryAdjustment) -> None:
        await self.store.adjust_inventory(record)
