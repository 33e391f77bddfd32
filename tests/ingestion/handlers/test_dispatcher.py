"""Tests for handler registration and type dispatch."""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors.exceptions import UnsupportedTypeError, ValidationError
from ingestion.handlers import (
    Dispatcher,
    InventoryAdjustedHandler,
    OrderPlacedHandler,
    PaymentSettledHandler,
    ProductReviewHandler,
    UserCreatedHandler,
    get_registered_handlers,
)
from ingestion.schemas.entities import InventoryAdjustment, Order, Payment, ProductReview, User
from ingestion.schemas.events import Envelope, TimestampPolicy

PROCESSED_AT = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


def _envelope(event_type: str, data: dict, event_id: str = "evt-1") -> Envelope:
    return Envelope(event_id=event_id, type=event_type, timestamp="2024-06-01T10:00:00Z", data=data)


@pytest.fixture
def mock_store():
    return MagicMock(
        upsert_user=AsyncMock(),
        upsert_order=AsyncMock(),
        upsert_payment=AsyncMock(),
        adjust_inventory=AsyncMock(),
        upsert_product_review=AsyncMock(),
    )


@pytest.fixture
def dispatcher(mock_store):
    return Dispatcher(mock_store)


class TestRegistry:

    def test_all_five_types_registered(self):
        assert get_registered_handlers() == {
            "UserCreated": "UserCreatedHandler",
            "OrderPlaced": "OrderPlacedHandler",
            "PaymentSettled": "PaymentSettledHandler",
            "InventoryAdjusted": "InventoryAdjustedHandler",
            "ProductReview": "ProductReviewHandler",
        }

    def test_dispatcher_lists_event_types(self, dispatcher):
        assert dispatcher.event_types == [
            "InventoryAdjusted",
            "OrderPlaced",
            "PaymentSettled",
            "ProductReview",
            "UserCreated",
        ]

    @pytest.mark.parametrize(
        "event_type, handler_cls",
        [
            ("UserCreated", UserCreatedHandler),
            ("OrderPlaced", OrderPlacedHandler),
            ("PaymentSettled", PaymentSettledHandler),
            ("InventoryAdjusted", InventoryAdjustedHandler),
            ("ProductReview", ProductReviewHandler),
        ],
    )
    def test_handler_for(self, dispatcher, event_type, handler_cls):
        assert isinstance(dispatcher.handler_for(event_type), handler_cls)

    def test_unknown_type_raises(self, dispatcher):
        with pytest.raises(UnsupportedTypeError) as exc_info:
            dispatcher.handler_for("OrderCancelled")
        assert exc_info.value.event_type == "OrderCancelled"

    def test_custom_registry(self, mock_store):
        from ingestion.schemas.events import EventType

        dispatcher = Dispatcher(mock_store, handlers={EventType.USER_CREATED: UserCreatedHandler})
        assert dispatcher.event_types == ["UserCreated"]
        with pytest.raises(UnsupportedTypeError):
            dispatcher.handler_for("OrderPlaced")


class TestDispatch:

    def test_user_created(self, dispatcher):
        dispatched = dispatcher.dispatch(
            _envelope(
                "UserCreated",
                {"userId": "u1", "name": "Ada", "email": "ada@example.com", "createdAt": "2024-06-01T09:00:00Z"},
            ),
            processed_at=PROCESSED_AT,
        )

        assert dispatched.record == User(
            user_id="u1",
            name="Ada",
            email="ada@example.com",
            created_at=datetime(2024, 6, 1, 9, tzinfo=UTC),
            updated_at=PROCESSED_AT,
        )

    def test_order_placed_status(self, dispatcher):
        dispatched = dispatcher.dispatch(
            _envelope("OrderPlaced", {"orderId": "o1", "userId": "u1", "total": 10, "createdAt": "2024-06-01T09:00:00Z"}),
            processed_at=PROCESSED_AT,
        )

        assert isinstance(dispatched.record, Order)
        assert dispatched.record.status == "placed"
        assert dispatched.record.total == Decimal("10.00")

    def test_payment_settled(self, dispatcher):
        dispatched = dispatcher.dispatch(
            _envelope(
                "PaymentSettled",
                {"orderId": "o1", "status": "settled", "amount": 10.5, "settledAt": "2024-06-01T09:30:00Z"},
            ),
            processed_at=PROCESSED_AT,
        )

        assert isinstance(dispatched.record, Payment)
        assert dispatched.record.amount == Decimal("10.50")

    def test_inventory_adjusted(self, dispatcher):
        dispatched = dispatcher.dispatch(
            _envelope("InventoryAdjusted", {"sku": "SKU-1", "delta": -2, "reason": "damaged"}),
            processed_at=PROCESSED_AT,
        )

        assert dispatched.record == InventoryAdjustment(
            sku="SKU-1", delta=-2, adjusted_at=PROCESSED_AT, reason="damaged"
        )

    def test_product_review_empty_remarks(self, dispatcher):
        dispatched = dispatcher.dispatch(
            _envelope("ProductReview", {"reviewId": "r1", "productName": "Lamp", "username": "bob", "rating": 5}),
            processed_at=PROCESSED_AT,
        )

        assert isinstance(dispatched.record, ProductReview)
        assert dispatched.record.remarks == ""

    def test_processed_at_defaults_to_now(self, dispatcher):
        before = datetime.now(UTC)
        dispatched = dispatcher.dispatch(_envelope("InventoryAdjusted", {"sku": "SKU-1", "delta": 1}))
        assert dispatched.record.adjusted_at >= before

    def test_unknown_type(self, dispatcher):
        with pytest.raises(UnsupportedTypeError):
            dispatcher.dispatch(_envelope("OrderCancelled", {"orderId": "o1"}))

    def test_missing_field_names_field(self, dispatcher):
        with pytest.raises(ValidationError) as exc_info:
            dispatcher.dispatch(_envelope("OrderPlaced", {"orderId": "o1", "userId": "u1"}))

        error = exc_info.value
        assert error.field == "total"
        assert error.event_type == "OrderPlaced"
        assert error.reason == "is required"
        assert str(error).startswith("OrderPlaced: field 'total' is required")

    def test_wrong_type_reason(self, dispatcher):
        with pytest.raises(ValidationError) as exc_info:
            dispatcher.dispatch(_envelope("UserCreated", {"userId": 7, "name": "Ada", "email": "a@x"}))

        assert exc_info.value.field == "userId"
        assert exc_info.value.reason == "must be a string"

    @pytest.mark.parametrize("total", [1e30, 10**30])
    def test_oversized_money_names_field(self, dispatcher, total):
        with pytest.raises(ValidationError) as exc_info:
            dispatcher.dispatch(_envelope("OrderPlaced", {"orderId": "o1", "userId": "u1", "total": total}))

        assert exc_info.value.field == "total"
        assert exc_info.value.event_type == "OrderPlaced"
        assert "must be less than 1e16" in exc_info.value.reason

    def test_oversized_delta_names_field(self, dispatcher):
        with pytest.raises(ValidationError) as exc_info:
            dispatcher.dispatch(_envelope("InventoryAdjusted", {"sku": "SKU-1", "delta": 2**31}))

        assert exc_info.value.field == "delta"

    def test_blank_key_rejected(self, dispatcher):
        with pytest.raises(ValidationError) as exc_info:
            dispatcher.dispatch(_envelope("UserCreated", {"userId": "   ", "name": "Ada", "email": "a@x"}))

        assert exc_info.value.field == "userId"
        assert exc_info.value.reason == "must not be blank"

    def test_fail_policy_rejects_bad_timestamp(self, mock_store):
        dispatcher = Dispatcher(mock_store, timestamp_policy="fail")
        assert dispatcher.timestamp_policy is TimestampPolicy.FAIL

        with pytest.raises(ValidationError) as exc_info:
            dispatcher.dispatch(_envelope("InventoryAdjusted", {"sku": "SKU-1", "delta": 1, "adjustedAt": "soon"}))
        assert exc_info.value.field == "adjustedAt"

    def test_invalid_policy_rejected(self, mock_store):
        with pytest.raises(ValueError):
            Dispatcher(mock_store, timestamp_policy="ignore")


class TestPersist:

    @pytest.mark.parametrize(
        "event_type, data, store_method",
        [
            ("UserCreated", {"userId": "u1", "name": "Ada", "email": "a@x"}, "upsert_user"),
            ("OrderPlaced", {"orderId": "o1", "userId": "u1", "total": 1}, "upsert_order"),
            ("PaymentSettled", {"orderId": "o1", "status": "settled", "amount": 1}, "upsert_payment"),
            ("InventoryAdjusted", {"sku": "SKU-1", "delta": 3}, "adjust_inventory"),
            ("ProductReview", {"reviewId": "r1", "productName": "Lamp", "username": "bob", "rating": 3}, "upsert_product_review"),
        ],
    )
    async def test_persist_calls_store(self, dispatcher, mock_store, event_type, data, store_method):
        dispatched = dispatcher.dispatch(_envelope(event_type, data), processed_at=PROCESSED_AT)

        await dispatched.persist()

        getattr(mock_store, store_method).assert_awaited_once_with(dispatched.record)
