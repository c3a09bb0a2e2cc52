"""Centralized test constants for the ctbridge test suite.

Organized by concern, mirroring CTraderConstants:

Usage (Test Constants - tc):
    from tests.constants import TestConstants as tc
    account_id = tc.Credentials.ACCOUNT_ID
    token = tc.Tokens.ACCESS_TOKEN

Usage (Source Constants - c):
    from ctbridge.constants import CTraderConstants as c
    code = c.PayloadType.NEW_ORDER_REQ
"""

from __future__ import annotations

from typing import Final


class TestConstants:
    """Centralized constants for all tests."""

    __test__ = False

    # =========================================================================
    # CREDENTIALS & ENDPOINTS
    # =========================================================================

    class Credentials:
        """Fake application and account credentials."""

        CLIENT_ID: Final[str] = "1234_test-client"
        CLIENT_SECRET: Final[str] = "test-client-secret"
        ACCOUNT_ID: Final[int] = 4400123

    class Endpoints:
        """Addresses that never leave the process."""

        TOKEN_URL: Final[str] = "https://auth.test/apps/token"
        WS_URL: Final[str] = "wss://gateway.test:5036"

    # =========================================================================
    # TOKENS
    # =========================================================================

    class Tokens:
        """Token values returned by the mocked token endpoint."""

        REFRESH_TOKEN: Final[str] = "refresh-token-0000"
        ROTATED_REFRESH_TOKEN: Final[str] = "refresh-token-1111"
        ACCESS_TOKEN: Final[str] = "access-token-aaaa"
        SECOND_ACCESS_TOKEN: Final[str] = "access-token-bbbb"
        EXPIRES_IN: Final[int] = 3600

    # =========================================================================
    # TIMING
    # =========================================================================

    class Timing:
        """Short timeouts keeping the suite fast."""

        REQUEST_TIMEOUT: Final[float] = 1.0
        ORDER_TIMEOUT: Final[float] = 1.0
        SHORT_TIMEOUT: Final[float] = 0.05
        WAIT_TIMEOUT: Final[float] = 3.0
        POLL_INTERVAL: Final[float] = 0.005
        NO_HEARTBEAT: Final[float] = 3600.0

    # =========================================================================
    # ORDERS
    # =========================================================================

    class Order:
        """Order values used across gateway and HTTP tests."""

        SYMBOL_ID: Final[int] = 1
        SYMBOL: Final[str] = "EURUSD"
        VOLUME: Final[int] = 100000
        LIMIT_PRICE: Final[float] = 1.0850
        ORDER_ID: Final[str] = "42"
        POSITION_ID: Final[int] = 9001

    # =========================================================================
    # GATEWAY ERRORS
    # =========================================================================

    class Errors:
        """Error codes the fake gateway answers with."""

        AUTH_FAILURE: Final[str] = "CH_CLIENT_AUTH_FAILURE"
        TOKEN_INVALID: Final[str] = "CH_ACCESS_TOKEN_INVALID"
        NOT_ENOUGH_MONEY: Final[str] = "NOT_ENOUGH_MONEY"
