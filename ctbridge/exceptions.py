"""
Custom exceptions for ctbridge.

This module provides a hierarchy of exceptions for better error handling
when bridging HTTP order requests onto the cTrader WebSocket session.

Exception Hierarchy:
    BridgeError
    ├── BridgeConnectionError
    │   ├── SessionNotReadyError
    │   ├── SessionClosedError
    │   └── RequestTimeoutError
    ├── BridgeAuthenticationError
    ├── TokenRefreshError
    │   └── RefreshTokenRevokedError
    ├── OrderError
    │   ├── OrderValidationError
    │   └── OrderRejectedError
    └── UnexpectedReplyError
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """
    Base exception for all ctbridge errors.

    Attributes:
        message: Human-readable error description
        error_code: Optional gateway / provider error code
        details: Optional additional error details
    """

    def __init__(
        self,
        message: str,
        error_code: str | int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with code and details."""
        msg = self.message
        if self.error_code is not None:
            msg = f"[{self.error_code}] {msg}"
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({details_str})"
        return msg


class BridgeConnectionError(BridgeError):
    """
    Raised when the gateway session cannot carry a request.

    This includes:
    - Session not authenticated yet
    - Socket closed while a reply was pending
    - Reply deadline exceeded
    """

    def __init__(
        self,
        message: str = "Gateway connection unavailable",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class SessionNotReadyError(BridgeConnectionError):
    """
    Raised when a request arrives while the session is not Ready.

    Orders are never queued across disconnects.
    """

    def __init__(
        self,
        message: str = "Session not ready",
        state: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if state:
            details["state"] = state
        super().__init__(message, details=details, **kwargs)


class SessionClosedError(BridgeConnectionError):
    """
    Raised for every pending request when its socket incarnation closes.
    """

    def __init__(
        self,
        message: str = "Connection closed",
        generation: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if generation is not None:
            details["generation"] = generation
        super().__init__(message, details=details, **kwargs)


class RequestTimeoutError(BridgeConnectionError):
    """
    Raised when a correlated request receives no reply in time.

    For orders the true outcome is unknown: the order may have executed.
    """

    def __init__(
        self,
        message: str = "Request timed out",
        correlation_id: str | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if correlation_id:
            details["correlation_id"] = correlation_id
        if timeout:
            details["timeout_seconds"] = timeout
        super().__init__(message, details=details, **kwargs)


class BridgeAuthenticationError(BridgeError):
    """
    Raised when the gateway rejects application or account authentication.

    This is fatal: the session stops reconnecting until an operator acts.
    """

    def __init__(
        self,
        message: str = "Authentication rejected",
        step: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if step:
            details["step"] = step
        super().__init__(message, details=details, **kwargs)


class TokenRefreshError(BridgeError):
    """
    Raised when the OAuth token endpoint call fails.

    Transient: the token manager retries in the background.
    """

    def __init__(
        self,
        message: str = "Token refresh failed",
        status_code: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)


class RefreshTokenRevokedError(TokenRefreshError):
    """
    Raised when the provider rejects the refresh token itself.

    Fatal: a manual re-authorization is required.
    """

    def __init__(
        self,
        message: str = "Refresh token rejected - manual re-authorization required",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class OrderError(BridgeError):
    """
    Base exception for order submission errors.
    """

    def __init__(
        self,
        message: str = "Order failed",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


class OrderValidationError(OrderError):
    """
    Raised when an order request is malformed or incomplete.

    Never reaches the socket.
    """

    def __init__(
        self,
        message: str = "Invalid order request",
        field: str | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)


class OrderRejectedError(OrderError):
    """
    Raised when the broker rejects an order.

    This can happen due to:
    - Invalid volume or prices
    - Market closed
    - Not enough money
    """

    def __init__(
        self,
        message: str = "Order rejected",
        order_id: str | int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if order_id is not None:
            details["order_id"] = order_id
        super().__init__(message, details=details, **kwargs)


class UnexpectedReplyError(BridgeError):
    """
    Raised when a correlated reply has a shape we do not understand.
    """

    def __init__(
        self,
        message: str = "Unexpected reply from gateway",
        payload_type: int | None = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs.pop("details", None) or {}
        if payload_type is not None:
            details["payload_type"] = payload_type
        super().__init__(message, details=details, **kwargs)


# Mapping of exception classes to HTTP status codes, most specific first
ERROR_STATUS_MAPPING: dict[type[BridgeError], int] = {
    OrderValidationError: 400,
    OrderRejectedError: 400,
    SessionNotReadyError: 503,
    SessionClosedError: 503,
    RequestTimeoutError: 504,
    BridgeAuthenticationError: 503,
    TokenRefreshError: 503,
    UnexpectedReplyError: 500,
}


def status_for_error(error: BridgeError) -> int:
    """
    Return the HTTP status code for a bridge error.

    Args:
        error: The raised bridge exception

    Returns:
        Status code of the closest mapped ancestor, 500 when none matches
    """
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_MAPPING:
            return ERROR_STATUS_MAPPING[cls]
    return 500
