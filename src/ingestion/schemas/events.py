"""
Event envelope and per-type payload schemas.

The envelope is the transport shape shared by every event. Its ``data`` object
is decoded into one of five statically typed payload models, selected by the
envelope's ``type`` through a pydantic discriminated union.

Numeric fields accept JSON integers and floats only. Money is normalized to a
two-place Decimal that fits NUMERIC(18, 2); integer fields accept floats only
when they are integral and must fit a 32-bit column. Booleans, strings and
non-finite numbers are rejected. Required text is stored as sent but may not
be blank.

Business timestamps accept RFC 3339 with ``Z`` or a numeric offset and are
normalized to UTC. A missing or unparseable timestamp is resolved by the
TimestampPolicy passed in the validation context.
"""

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationInfo,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

logger = logging.getLogger(__name__)

MONEY_QUANTUM = Decimal("0.01")
# NUMERIC(18, 2) holds at most 16 integer digits
MONEY_LIMIT = Decimal(10) ** 16
# INTEGER columns are 32-bit
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1
RATING_MIN = 1
RATING_MAX = 5


class EventType(str, Enum):
    USER_CREATED = "UserCreated"
    ORDER_PLACED = "OrderPlaced"
    PAYMENT_SETTLED = "PaymentSettled"
    INVENTORY_ADJUSTED = "InventoryAdjusted"
    PRODUCT_REVIEW = "ProductReview"

    @classmethod
    def parse(cls, value: str) -> "EventType | None":
        try:
            return cls(value)
        except ValueError:
            return None


class TimestampPolicy(str, Enum):
    """What to do with a missing or unparseable business timestamp."""

    FALLBACK = "fallback"  # substitute processing time, log a warning
    FAIL = "fail"  # reject the event


@dataclass(frozen=True)
class Envelope:
    """Structurally valid event envelope. ``data`` is not yet inspected."""

    event_id: str
    type: str
    timestamp: str
    data: dict[str, Any]


# =============================================================================
# Field coercion
# =============================================================================


def _reject_non_number(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PydanticCustomError(
            "numeric_type",
            "must be a number, got {kind}",
            {"kind": type(value).__name__},
        )
    if isinstance(value, float) and not math.isfinite(value):
        raise PydanticCustomError("numeric_finite", "must be a finite number")


def _money_range_error(value: Any) -> PydanticCustomError:
    return PydanticCustomError(
        "money_range",
        "must be less than {limit} in magnitude, got {value}",
        {"limit": f"1e{MONEY_LIMIT.adjusted()}", "value": str(value)[:64]},
    )


def coerce_money(value: Any) -> Decimal:
    """Number -> Decimal with two decimal places, within NUMERIC(18, 2)."""
    _reject_non_number(value)
    try:
        money = Decimal(str(value)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_EVEN)
    except InvalidOperation:
        raise _money_range_error(value) from None
    if abs(money) >= MONEY_LIMIT:
        raise _money_range_error(value)
    return money


def coerce_int(value: Any) -> int:
    """Number -> int, accepting floats only when they carry no fraction."""
    _reject_non_number(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise PydanticCustomError(
                "integer_fraction", "must be a whole number, got {value}", {"value": value}
            )
        value = int(value)
    if not INT_MIN <= value <= INT_MAX:
        raise PydanticCustomError(
            "integer_range",
            "must be between {low} and {high}, got {value}",
            {"low": INT_MIN, "high": INT_MAX, "value": value},
        )
    return value


def coerce_rating(value: Any) -> int:
    rating = coerce_int(value)
    if not RATING_MIN <= rating <= RATING_MAX:
        raise PydanticCustomError(
            "rating_range",
            "must be between {low} and {high}, got {value}",
            {"low": RATING_MIN, "high": RATING_MAX, "value": rating},
        )
    return rating


def parse_rfc3339(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp to an aware UTC datetime, or None."""
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s or "T" not in s.upper():
        return None
    if s[-1] in ("Z", "z"):
        s = s[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed.astimezone(UTC)


def resolve_timestamp(value: Any, info: ValidationInfo) -> datetime:
    """Apply the TimestampPolicy from the validation context."""
    parsed = parse_rfc3339(value)
    if parsed is not None:
        return parsed

    context = info.context or {}
    policy = TimestampPolicy(context.get("timestamp_policy", TimestampPolicy.FALLBACK))
    field_name = to_camel(info.field_name) if info.field_name else "timestamp"

    if policy is TimestampPolicy.FAIL:
        if value is None:
            raise PydanticCustomError("missing_timestamp", "is required")
        raise PydanticCustomError(
            "timestamp_format", "is not an RFC 3339 timestamp: {value}", {"value": str(value)[:64]}
        )

    fallback = context.get("processed_at") or datetime.now(UTC)
    logger.warning(
        "Timestamp missing or unparseable, using processing time",
        extra={
            "field": field_name,
            "event_type": context.get("event_type"),
            "event_id": context.get("event_id"),
            "raw_value": None if value is None else str(value)[:64],
        },
    )
    return fallback


def _reject_blank(value: str) -> str:
    # Keys are stored as sent; whitespace-only values are rejected, not trimmed
    if not value.strip():
        raise PydanticCustomError("blank_text", "must not be blank")
    return value


Money = Annotated[Decimal, BeforeValidator(coerce_money)]
WholeNumber = Annotated[int, BeforeValidator(coerce_int)]
Rating = Annotated[int, BeforeValidator(coerce_rating)]
Timestamp = Annotated[datetime, BeforeValidator(resolve_timestamp)]
RequiredText = Annotated[str, StringConstraints(min_length=1), AfterValidator(_reject_blank)]


def _timestamp_field():
    # Runs resolve_timestamp even when the field is absent
    return Field(default=None, validate_default=True)


# =============================================================================
# Payload models
# =============================================================================


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class UserCreatedPayload(_Payload):
    kind: Literal["UserCreated"] = "UserCreated"
    user_id: RequiredText
    name: RequiredText
    email: RequiredText
    created_at: Timestamp = _timestamp_field()


class OrderPlacedPayload(_Payload):
    kind: Literal["OrderPlaced"] = "OrderPlaced"
    order_id: RequiredText
    user_id: RequiredText
    total: Money
    created_at: Timestamp = _timestamp_field()


class PaymentSettledPayload(_Payload):
    kind: Literal["PaymentSettled"] = "PaymentSettled"
    order_id: RequiredText
    status: RequiredText
    amount: Money
    settled_at: Timestamp = _timestamp_field()


class InventoryAdjustedPayload(_Payload):
    kind: Literal["InventoryAdjusted"] = "InventoryAdjusted"
    sku: RequiredText
    delta: WholeNumber
    adjusted_at: Timestamp = _timestamp_field()
    reason: str | None = None


class ProductReviewPayload(_Payload):
    kind: Literal["ProductReview"] = "ProductReview"
    review_id: RequiredText
    product_name: RequiredText
    username: RequiredText
    rating: Rating
    remarks: str | None = None
    created_at: Timestamp = _timestamp_field()


EventPayload = Annotated[
    Union[
        UserCreatedPayload,
        OrderPlacedPayload,
        PaymentSettledPayload,
        InventoryAdjustedPayload,
        ProductReviewPayload,
    ],
    Field(discriminator="kind"),
]

EVENT_PAYLOAD_ADAPTER: TypeAdapter[EventPayload] = TypeAdapter(EventPayload)


__all__ = [
    "EventType",
    "TimestampPolicy",
    "Envelope",
    "UserCreatedPayload",
    "OrderPlacedPayload",
    "PaymentSettledPayload",
    "InventoryAdjustedPayload",
    "ProductReviewPayload",
    "EventPayload",
    "EVENT_PAYLOAD_ADAPTER",
    "coerce_money",
    "coerce_int",
    "coerce_rating",
    "parse_rfc3339",
]
