"""Tests for payload models, field coercion and timestamp policy."""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pydantic
import pytest

from ingestion.schemas.events import (
    EVENT_PAYLOAD_ADAPTER,
    EventType,
    InventoryAdjustedPayload,
    OrderPlacedPayload,
    ProductReviewPayload,
    TimestampPolicy,
    UserCreatedPayload,
    coerce_int,
    coerce_money,
    coerce_rating,
    parse_rfc3339,
)

PROCESSED_AT = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def _validate(kind: str, data: dict, policy: TimestampPolicy = TimestampPolicy.FALLBACK):
    return EVENT_PAYLOAD_ADAPTER.validate_python(
        {**data, "kind": kind},
        context={"timestamp_policy": policy, "processed_at": PROCESSED_AT, "event_type": kind},
    )


class TestEventType:

    def test_parse_known(self):
        assert EventType.parse("OrderPlaced") is EventType.ORDER_PLACED

    def test_parse_unknown_returns_none(self):
        assert EventType.parse("OrderCancelled") is None
        assert EventType.parse("orderplaced") is None


class TestCoercion:

    def test_money_rounds_to_two_places(self):
        assert coerce_money(42) == Decimal("42.00")
        assert coerce_money(19.999) == Decimal("20.00")

    def test_money_rounds_half_even(self):
        assert coerce_money(0.125) == Decimal("0.12")
        assert coerce_money(0.135) == Decimal("0.14")

    @pytest.mark.parametrize("value", ["42.50", True, None, float("nan"), float("inf")])
    def test_money_rejects_non_numbers(self, value):
        with pytest.raises(ValueError):
            coerce_money(value)

    @pytest.mark.parametrize("value", [1e30, 10**30, 1e16, -(10**16)])
    def test_money_beyond_numeric_18_2_rejected(self, value):
        with pytest.raises(ValueError, match="must be less than 1e16"):
            coerce_money(value)

    def test_money_largest_storable_value(self):
        assert coerce_money(9999999999999999) == Decimal("9999999999999999.00")

    def test_money_rounding_up_to_limit_rejected(self):
        with pytest.raises(ValueError, match="must be less than 1e16"):
            coerce_money(9999999999999999.995)

    def test_int_accepts_integral_float(self):
        assert coerce_int(5.0) == 5
        assert coerce_int(-2) == -2

    def test_int_32_bit_bounds(self):
        assert coerce_int(2**31 - 1) == 2**31 - 1
        assert coerce_int(-(2**31)) == -(2**31)

    @pytest.mark.parametrize("value", [2**31, -(2**31) - 1, 1e300])
    def test_int_out_of_32_bit_range_rejected(self, value):
        with pytest.raises(ValueError, match="must be between"):
            coerce_int(value)

    def test_int_rejects_fraction(self):
        with pytest.raises(ValueError, match="whole number"):
            coerce_int(2.5)

    def test_rating_range(self):
        assert coerce_rating(1) == 1
        assert coerce_rating(5.0) == 5
        with pytest.raises(ValueError, match="between 1 and 5"):
            coerce_rating(6)
        with pytest.raises(ValueError, match="between 1 and 5"):
            coerce_rating(0)


class TestParseRfc3339:

    def test_zulu(self):
        assert parse_rfc3339("2024-06-01T10:00:00Z") == datetime(2024, 6, 1, 10, tzinfo=UTC)

    def test_offset_normalized_to_utc(self):
        parsed = parse_rfc3339("2024-06-01T10:00:00+02:00")
        assert parsed == datetime(2024, 6, 1, 8, tzinfo=UTC)
        assert parsed.utcoffset() == timedelta(0)

    def test_fractional_seconds(self):
        parsed = parse_rfc3339("2024-06-01T10:00:00.123456Z")
        assert parsed.microsecond == 123456

    @pytest.mark.parametrize(
        "value",
        ["", "yesterday", "2024-06-01", "2024-06-01T10:00:00", "2024-13-01T10:00:00Z", 1717236000, None],
    )
    def test_rejects(self, value):
        assert parse_rfc3339(value) is None


class TestPayloadModels:

    def test_user_created_from_camel_case(self):
        payload = _validate(
            "UserCreated",
            {"userId": "u1", "name": "Ada", "email": "ada@example.com", "createdAt": "2024-06-01T09:00:00Z"},
        )

        assert isinstance(payload, UserCreatedPayload)
        assert payload.user_id == "u1"
        assert payload.created_at == datetime(2024, 6, 1, 9, tzinfo=UTC)

    def test_unknown_fields_ignored(self):
        payload = _validate(
            "UserCreated",
            {"userId": "u1", "name": "Ada", "email": "a@x", "createdAt": "2024-06-01T09:00:00Z", "plan": "pro"},
        )
        assert not hasattr(payload, "plan")

    def test_order_total_normalized(self):
        payload = _validate(
            "OrderPlaced",
            {"orderId": "o1", "userId": "u1", "total": 42.5, "createdAt": "2024-06-01T09:00:00Z"},
        )

        assert isinstance(payload, OrderPlacedPayload)
        assert payload.total == Decimal("42.50")

    def test_order_total_string_rejected(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate("OrderPlaced", {"orderId": "o1", "userId": "u1", "total": "42.50"})

        error = exc_info.value.errors()[0]
        assert error["loc"][-1] == "total"
        assert error["type"] == "numeric_type"

    def test_missing_required_field(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate("OrderPlaced", {"orderId": "o1", "userId": "u1"})

        error = exc_info.value.errors()[0]
        assert error["type"] == "missing"
        assert error["loc"][-1] == "total"

    def test_blank_required_string_rejected(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate("UserCreated", {"userId": "  ", "name": "Ada", "email": "a@x"})

        assert exc_info.value.errors()[0]["type"] == "blank_text"

    def test_empty_required_string_rejected(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate("UserCreated", {"userId": "", "name": "Ada", "email": "a@x"})

        assert exc_info.value.errors()[0]["type"] == "string_too_short"

    def test_required_string_kept_as_sent(self):
        payload = _validate("UserCreated", {"userId": " u1 ", "name": "Ada", "email": "a@x"})
        assert payload.user_id == " u1 "

    def test_order_total_too_large(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate("OrderPlaced", {"orderId": "o1", "userId": "u1", "total": 1e30})

        error = exc_info.value.errors()[0]
        assert error["loc"][-1] == "total"
        assert error["type"] == "money_range"

    def test_inventory_delta_too_large(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate("InventoryAdjusted", {"sku": "SKU-1", "delta": 2**40})

        assert exc_info.value.errors()[0]["type"] == "integer_range"

    def test_inventory_negative_delta_and_optional_reason(self):
        payload = _validate("InventoryAdjusted", {"sku": "SKU-1", "delta": -2, "adjustedAt": "2024-06-01T09:00:00Z"})

        assert isinstance(payload, InventoryAdjustedPayload)
        assert payload.delta == -2
        assert payload.reason is None

    def test_review_rating_out_of_range(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate(
                "ProductReview",
                {"reviewId": "r1", "productName": "Lamp", "username": "bob", "rating": 7},
            )
        assert exc_info.value.errors()[0]["type"] == "rating_range"

    def test_review_remarks_optional(self):
        payload = _validate(
            "ProductReview",
            {"reviewId": "r1", "productName": "Lamp", "username": "bob", "rating": 4},
        )
        assert isinstance(payload, ProductReviewPayload)
        assert payload.remarks is None

    def test_payloads_are_frozen(self):
        payload = _validate("InventoryAdjusted", {"sku": "SKU-1", "delta": 1})
        with pytest.raises(pydantic.ValidationError):
            payload.delta = 2


class TestTimestampPolicy:

    def test_fallback_uses_processing_time_when_missing(self):
        payload = _validate("UserCreated", {"userId": "u1", "name": "Ada", "email": "a@x"})
        assert payload.created_at == PROCESSED_AT

    def test_fallback_uses_processing_time_when_unparseable(self, caplog):
        payload = _validate(
            "UserCreated",
            {"userId": "u1", "name": "Ada", "email": "a@x", "createdAt": "last tuesday"},
        )

        assert payload.created_at == PROCESSED_AT
        assert "using processing time" in caplog.text

    def test_fail_rejects_unparseable(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate(
                "PaymentSettled",
                {"orderId": "o1", "status": "settled", "amount": 10, "settledAt": "last tuesday"},
                policy=TimestampPolicy.FAIL,
            )

        error = exc_info.value.errors()[0]
        assert error["type"] == "timestamp_format"
        assert error["loc"][-1] == "settledAt"

    def test_fail_rejects_missing(self):
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _validate("InventoryAdjusted", {"sku": "SKU-1", "delta": 1}, policy=TimestampPolicy.FAIL)

        assert exc_info.value.errors()[0]["type"] == "missing_timestamp"

    def test_valid_timestamp_kept_under_fail(self):
        payload = _validate(
            "InventoryAdjusted",
            {"sku": "SKU-1", "delta": 1, "adjustedAt": "2024-06-01T10:00:00-05:00"},
            policy=TimestampPolicy.FAIL,
        )
        assert payload.adjusted_at == datetime(2024, 6, 1, 15, tzinfo=timezone.utc)
