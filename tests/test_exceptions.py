"""
Tests for ctbridge custom exceptions.
"""

from __future__ import annotations

import pytest

from ctbridge.exceptions import (
    ERROR_STATUS_MAPPING,
    BridgeAuthenticationError,
    BridgeConnectionError,
    BridgeError,
    OrderError,
    OrderRejectedError,
    OrderValidationError,
    RefreshTokenRevokedError,
    RequestTimeoutError,
    SessionClosedError,
    SessionNotReadyError,
    TokenRefreshError,
    UnexpectedReplyError,
    status_for_error,
)


class TestBridgeError:
    """Test base BridgeError exception."""

    def test_basic_message(self) -> None:
        """Test exception with basic message."""
        error = BridgeError("Test error")
        assert str(error) == "Test error"
        assert error.message == "Test error"
        assert error.error_code is None
        assert error.details == {}

    def test_with_error_code(self) -> None:
        """Test exception with error code."""
        error = BridgeError("Test error", error_code="CH_CLIENT_AUTH_FAILURE")
        assert str(error) == "[CH_CLIENT_AUTH_FAILURE] Test error"

    def test_with_details(self) -> None:
        """Test exception with details."""
        error = BridgeError("Test error", details={"key": "value"})
        assert "key=value" in str(error)
        assert error.details == {"key": "value"}

    def test_full_format(self) -> None:
        """Test exception with all parameters."""
        error = BridgeError("Test error", error_code=7, details={"key": "value"})
        assert str(error) == "[7] Test error (key=value)"


class TestConnectionErrors:
    """Test session-related exceptions."""

    def test_hierarchy(self) -> None:
        """Session errors are connection errors."""
        for cls in (SessionNotReadyError, SessionClosedError, RequestTimeoutError):
            assert issubclass(cls, BridgeConnectionError)
            assert issubclass(cls, BridgeError)

    def test_not_ready_state(self) -> None:
        """State is recorded in details."""
        error = SessionNotReadyError(state="connecting")
        assert error.details == {"state": "connecting"}
        assert "Session not ready" in str(error)

    def test_closed_generation(self) -> None:
        """Generation is recorded even when zero."""
        error = SessionClosedError(generation=0)
        assert error.details == {"generation": 0}

    def test_timeout_details(self) -> None:
        """Correlation id and timeout are recorded."""
        error = RequestTimeoutError(correlation_id="g1-abc", timeout=30.0)
        assert error.details == {"correlation_id": "g1-abc", "timeout_seconds": 30.0}

    def test_details_none_accepted(self) -> None:
        """An explicit details=None is treated as empty."""
        error = SessionClosedError(generation=2, details=None)
        assert error.details == {"generation": 2}


class TestTokenErrors:
    """Test token refresh exceptions."""

    def test_revoked_is_refresh_error(self) -> None:
        """RefreshTokenRevokedError specializes TokenRefreshError."""
        error = RefreshTokenRevokedError(error_code="invalid_grant", status_code=400)
        assert isinstance(error, TokenRefreshError)
        assert error.error_code == "invalid_grant"
        assert error.details["status_code"] == 400
        assert "manual re-authorization" in str(error)


class TestOrderErrors:
    """Test order exceptions."""

    def test_hierarchy(self) -> None:
        """Validation and rejection are order errors."""
        assert issubclass(OrderValidationError, OrderError)
        assert issubclass(OrderRejectedError, OrderError)

    def test_rejected_order_id(self) -> None:
        """Order id is kept even when falsy."""
        error = OrderRejectedError("Not enough money", error_code="NOT_ENOUGH_MONEY", order_id=0)
        assert error.details == {"order_id": 0}
        assert str(error) == "[NOT_ENOUGH_MONEY] Not enough money (order_id=0)"

    def test_validation_field(self) -> None:
        """Field is recorded in details."""
        assert OrderValidationError(field="symbol").details == {"field": "symbol"}


class TestStatusMapping:
    """Test HTTP status mapping."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (OrderValidationError(), 400),
            (OrderRejectedError(), 400),
            (SessionNotReadyError(), 503),
            (SessionClosedError(), 503),
            (RequestTimeoutError(), 504),
            (BridgeAuthenticationError(), 503),
            (TokenRefreshError(), 503),
            (RefreshTokenRevokedError(), 503),
            (UnexpectedReplyError(), 500),
            (BridgeError("other"), 500),
            (BridgeConnectionError(), 500),
        ],
    )
    def test_status_for_error(self, error: BridgeError, expected: int) -> None:
        """Each error maps to the status of its closest mapped ancestor."""
        assert status_for_error(error) == expected

    def test_mapping_keys_are_bridge_errors(self) -> None:
        """Only BridgeError subclasses are mapped."""
        assert all(issubclass(cls, BridgeError) for cls in ERROR_STATUS_MAPPING)
