"""
Event schemas: envelope, typed payloads (discriminated union) and entity records.
"""

from ingestion.schemas.entities import (
    EntityRecord,
    Inventory,
    InventoryAdjustment,
    Order,
    Payment,
    ProductReview,
    User,
)
from ingestion.schemas.events import (
    EVENT_PAYLOAD_ADAPTER,
    Envelope,
    EventPayload,
    EventType,
    InventoryAdjustedPayload,
    OrderPlacedPayload,
    PaymentSettledPayload,
    ProductReviewPayload,
    TimestampPolicy,
    UserCreatedPayload,
)

__all__ = [
    "Envelope",
    "EventType",
    "TimestampPolicy",
    "EventPayload",
    "EVENT_PAYLOAD_ADAPTER",
    "UserCreatedPayload",
    "OrderPlacedPayload",
    "PaymentSettledPayload",
    "InventoryAdjustedPayload",
    "ProductReviewPayload",
    "EntityRecord",
    "User",
    "Order",
    "Payment",
    "InventoryAdjustment",
    "Inventory",
    "ProductReview",
]
