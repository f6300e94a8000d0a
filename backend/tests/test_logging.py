"""
Tests for structured logging helpers.
"""

from unittest.mock import Mock

import pytest

from mtaani_gas.core.logging import (
    add_correlation_ids,
    clear_context,
    get_request_id,
    log_performance,
    set_request_id,
    set_user_id,
)


@pytest.fixture(autouse=True)
def reset_context():
    """Leave no correlation ids behind."""
    yield
    clear_context()


class TestCorrelationIds:
    """Test request and user correlation."""

    def test_generates_request_id_when_missing(self):
        request_id = set_request_id()

        assert request_id
        assert get_request_id() == request_id

    def test_ids_added_to_events(self):
        set_request_id("req-1")
        set_user_id("user-1")

        event = add_correlation_ids(Mock(), "info", {"event": "Order created"})

        assert event["request_id"] == "req-1"
        assert event["user_id"] == "user-1"

    def test_cleared_context_adds_nothing(self):
        set_request_id("req-1")
        clear_context()

        event = add_correlation_ids(Mock(), "info", {"event": "x"})

        assert "request_id" not in event
        assert "user_id" not in event


class TestPerformanceLogger:
    """Test timing of logged blocks."""

    def test_fast_block_logged_at_debug(self):
        logger = Mock()

        with log_performance(logger, "claim_order", order_id="o-1"):
            pass

        logger.debug.assert_called_once()
        kwargs = logger.debug.call_args.kwargs
        assert kwargs["operation"] == "claim_order"
        assert kwargs["order_id"] == "o-1"
        assert kwargs["duration_ms"] >= 0

    def test_slow_block_logged_at_warning(self):
        logger = Mock()

        with log_performance(logger, "sweep", slow_threshold_ms=-1):
            pass

        logger.warning.assert_called_once()

    def test_failed_block_logged_and_reraised(self):
        logger = Mock()

        with pytest.raises(RuntimeError):
            with log_performance(logger, "verify_code"):
                raise RuntimeError("boom")

        logger.error.assert_called_once()
        assert logger.error.call_args.kwargs["error_type"] == "RuntimeError"
