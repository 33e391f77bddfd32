"""
Entity records produced by event handlers, one upsert target each.

Entity Types:
    - User: users table (last-write-wins)
    - Order: orders table (last-write-wins, status always "placed" from OrderPlaced)
    - Payment: payments table (last-write-wins)
    - InventoryAdjustment: additive delta applied to the inventory table
    - ProductReview: product_reviews table (last-write-wins)

All datetimes are timezone-aware UTC. ``updated_at`` is the processing time.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

ORDER_STATUS_PLACED = "placed"


@dataclass(frozen=True)
class User:
    user_id: str
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Order:
    order_id: str
    user_id: str
    total: Decimal
    created_at: datetime
    updated_at: datetime
    status: str = ORDER_STATUS_PLACED


@dataclass(frozen=True)
class Payment:
    order_id: str
    status: str
    amount: Decimal
    settled_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class InventoryAdjustment:
    sku: str
    delta: int
    adjusted_at: datetime
    reason: str | None = None


@dataclass(frozen=True)
class Inventory:
    """Current stock row, as read back from the store."""

    sku: str
    quantity: int
    last_adjusted_at: datetime


@dataclass(frozen=True)
class ProductReview:
    review_id: str
    product_name: str
    username: str
    rating: int
    remarks: str
    created_at: datetime
    updated_at: datetime


EntityRecord = User | Order | Payment | InventoryAdjustment | ProductReview


__all__ = [
    "ORDER_STATUS_PLACED",
    "User",
    "Order",
    "Payment",
    "InventoryAdjustment",
    "Inventory",
    "ProductReview",
    "EntityRecord",
]
