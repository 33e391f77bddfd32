"""
Event handlers.

Provides:
    - parse_envelope: raw bytes -> Envelope (ParseError on failure)
    - Dispatcher: Envelope -> entity record via the registered handler
    - EventHandler: base class; subclasses register with @register_handler

Registered handlers:
    - UserCreatedHandler: UserCreated
    - OrderPlacedHandler: OrderPlaced
    - PaymentSettledHandler: PaymentSettled
    - InventoryAdjustedHandler: InventoryAdjusted
    - ProductReviewHandler: ProductReview
"""

from ingestion.handlers.base import (
    Dispatched,
    Dispatcher,
    EventHandler,
    get_registered_handlers,
    register_handler,
)
from ingestion.handlers.envelope import decode_json_object, parse_envelope

# Import handler modules to trigger registration
from ingestion.handlers.inventory import InventoryAdjustedHandler
from ingestion.handlers.order import OrderPlacedHandler
from ingestion.handlers.payment import PaymentSettledHandler
from ingestion.handlers.review import ProductReviewHandler
from ingestion.handlers.user import UserCreatedHandler

__all__ = [
    "parse_envelope",
    "decode_json_object",
    "Dispatcher",
    "Dispatched",
    "EventHandler",
    "register_handler",
    "get_registered_handlers",
    "UserCreatedHandler",
    "OrderPlacedHandler",
    "PaymentSettledHandler",
    "InventoryAdjustedHandler",
    "ProductReviewHandler",
]
