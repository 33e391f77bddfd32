"""
Tests for exception hierarchy and error classification.
"""

from core.errors.exceptions import (
    CommitError,
    ErrorCategory,
    ParseError,
    PermanentError,
    PersistenceError,
    PipelineError,
    SinkError,
    TransientError,
    UnsupportedTypeError,
    ValidationError,
    classify_exception,
)


class TestErrorCategory:
    """Test ErrorCategory enum."""

    def test_all_categories_exist(self):
        """All expected categories are defined."""
        assert ErrorCategory.TRANSIENT.value == "transient"
        assert ErrorCategory.PERMANENT.value == "permanent"
        assert ErrorCategory.UNKNOWN.value == "unknown"


class TestPipelineError:
    """Test base PipelineError class."""

    def test_basic_error(self):
        """Can create basic error with message."""
        err = PipelineError("Something went wrong")
        assert err.message == "Something went wrong"
        assert err.cause is None
        assert err.context == {}
        assert err.category == ErrorCategory.UNKNOWN

    def test_error_with_cause(self):
        """Can wrap another exception."""
        cause = ValueError("Invalid value")
        err = PipelineError("Wrapper message", cause=cause)
        assert err.cause == cause
        assert str(err) == "Wrapper message | Caused by: Invalid value"

    def test_error_with_context(self):
        """Can add context dict."""
        err = PipelineError("Error", context={"topic": "events", "offset": 42})
        assert err.context["topic"] == "events"
        assert err.context["offset"] == 42

    def test_is_retryable_default(self):
        """Unknown category is retryable."""
        assert PipelineError("Error").is_retryable is True


class TestEnvelopeErrors:
    """Per-envelope errors are permanent and never retried."""

    def test_parse_error_is_permanent(self):
        err = ParseError("Envelope is not valid JSON")
        assert isinstance(err, PermanentError)
        assert err.category == ErrorCategory.PERMANENT
        assert err.is_retryable is False

    def test_validation_error_names_field(self):
        err = ValidationError("total", "OrderPlaced")
        assert err.field == "total"
        assert err.event_type == "OrderPlaced"
        assert err.reason == "is required"
        assert str(err) == "OrderPlaced: field 'total' is required"
        assert err.context == {"field": "total", "event_type": "OrderPlaced"}
        assert err.is_retryable is False

    def test_validation_error_custom_reason(self):
        err = ValidationError("rating", "ProductReview", "must be between 1 and 5")
        assert "must be between 1 and 5" in str(err)

    def test_unsupported_type_error(self):
        err = UnsupportedTypeError("RefundIssued")
        assert err.event_type == "RefundIssued"
        assert "'RefundIssued'" in str(err)
        assert err.category == ErrorCategory.PERMANENT


class TestCollaboratorErrors:
    """Store, sink and commit errors."""

    def test_persistence_error_transient_by_default(self):
        err = PersistenceError("upsert_user failed", operation="upsert_user")
        assert err.operation == "upsert_user"
        assert err.category == ErrorCategory.TRANSIENT
        assert err.context["operation"] == "upsert_user"

    def test_persistence_error_permanent_for_constraints(self):
        err = PersistenceError("fk violated", operation="upsert_order", permanent=True)
        assert err.category == ErrorCategory.PERMANENT
        assert err.is_retryable is False

    def test_permanent_flag_does_not_leak_to_class(self):
        PersistenceError("fk violated", permanent=True)
        assert PersistenceError("later").category == ErrorCategory.TRANSIENT

    def test_sink_and_commit_errors_are_transient(self):
        assert isinstance(SinkError("redis down"), TransientError)
        assert CommitError("rebalance in progress").category == ErrorCategory.TRANSIENT


class TestClassifyException:
    """Test classify_exception() utility."""

    def test_pipeline_error_uses_its_category(self):
        assert classify_exception(ParseError("bad")) == ErrorCategory.PERMANENT
        assert classify_exception(SinkError("down")) == ErrorCategory.TRANSIENT

    def test_builtin_connection_errors(self):
        assert classify_exception(ConnectionRefusedError()) == ErrorCategory.TRANSIENT
        assert classify_exception(TimeoutError()) == ErrorCategory.TRANSIENT

    def test_message_markers(self):
        assert classify_exception(Exception("connection reset by peer")) == ErrorCategory.TRANSIENT
        assert classify_exception(Exception("operation timed out")) == ErrorCategory.TRANSIENT
        assert classify_exception(Exception("no route to host")) == ErrorCategory.TRANSIENT

    def test_unknown_errors(self):
        """Returns UNKNOWN for unrecognized errors."""
        assert classify_exception(Exception("something weird")) == ErrorCategory.UNKNOWN
