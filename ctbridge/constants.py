"""cTrader Constants - Centralized protocol and domain constants for ctbridge.

All magic numbers, wire codes, and enums are defined here.
Access via: from ctbridge.constants import CTraderConstants as c
Usage: c.Network.DEMO_WS_URL, c.PayloadType.NEW_ORDER_REQ, c.Order.OrderType.MARKET

The payload type and enum values follow the cTrader Open API JSON catalog.
They are grouped here as data so a deployment targeting a gateway with a
different catalog only has to change this module.
"""

from enum import IntEnum, StrEnum
from typing import Final


class CTraderConstants:
    """Centralized constants organized by protocol namespaces.

    Namespaces are organized by function, not data type.
    All constants are accessed via c.Namespace.CONSTANT or c.Namespace.Enum.VALUE
    """

    # ==================== NETWORK & ENDPOINTS ====================
    class Network:
        """Upstream endpoints and local listener defaults."""

        TOKEN_URL: Final = "https://openapi.ctrader.com/apps/token"
        DEMO_WS_URL: Final = "wss://demo.ctraderapi.com:5036"
        LIVE_WS_URL: Final = "wss://live.ctraderapi.com:5036"

        BIND_ALL: Final = "0.0.0.0"  # noqa: S104
        HTTP_PORT: Final = 8080

        # websockets library keepalive is disabled; the protocol heartbeat is used
        WS_OPEN_TIMEOUT: Final = 10.0
        WS_CLOSE_TIMEOUT: Final = 5.0
        WS_MAX_MESSAGE_SIZE: Final = 4 * 1024 * 1024

    class Environment(StrEnum):
        """Gateway environment selector."""

        DEMO = "demo"
        LIVE = "live"

    # ==================== TIMING ====================
    class Timing:
        """Timeouts and intervals (seconds)."""

        REQUEST_TIMEOUT: Final = 10.0
        ORDER_TIMEOUT: Final = 30.0
        HEARTBEAT_INTERVAL: Final = 10.0

        RECONNECT_INITIAL_DELAY: Final = 2.0
        RECONNECT_MAX_DELAY: Final = 60.0
        RECONNECT_MULTIPLIER: Final = 2.0
        RECONNECT_JITTER: Final = 0.1  # fraction of the delay

        TOKEN_SAFETY_MARGIN: Final = 300.0
        TOKEN_MIN_REFRESH_DELAY: Final = 60.0
        TOKEN_MAX_REFRESH_DELAY: Final = 24 * 60 * 60.0
        TOKEN_REFRESH_JITTER: Final = 30.0
        TOKEN_HTTP_TIMEOUT: Final = 15.0

        RATE_LIMIT_MIN_DELAY: Final = 30.0
        RATE_LIMIT_MAX_DELAY: Final = 60.0
        REFRESH_FAILURE_MIN_DELAY: Final = 60.0
        REFRESH_FAILURE_MAX_DELAY: Final = 120.0

    # ==================== OAUTH ====================
    class OAuth:
        """Token endpoint vocabulary."""

        GRANT_TYPE_REFRESH: Final = "refresh_token"
        RATE_LIMITED_STATUS: Final = 429

        # error / errorCode values meaning the refresh token itself is dead
        INVALID_REFRESH_CODES: Final = frozenset({
            "invalid_grant",
            "invalid_token",
            "unauthorized_client",
            "ACCESS_DENIED",
            "INVALID_REFRESH_TOKEN",
        })

    # ==================== WIRE ENVELOPE ====================
    class Envelope:
        """Field names of a JSON frame."""

        CLIENT_MSG_ID: Final = "clientMsgId"
        PAYLOAD_TYPE: Final = "payloadType"
        PAYLOAD: Final = "payload"

    # ==================== PAYLOAD TYPES ====================
    class PayloadType(IntEnum):
        """Numeric message kinds (ProtoPayloadType / ProtoOAPayloadType)."""

        # Common
        ERROR_RES = 50
        HEARTBEAT_EVENT = 51

        # Authentication
        APPLICATION_AUTH_REQ = 2100
        APPLICATION_AUTH_RES = 2101
        ACCOUNT_AUTH_REQ = 2102
        ACCOUNT_AUTH_RES = 2103
        VERSION_REQ = 2104
        VERSION_RES = 2105

        # Trading
        NEW_ORDER_REQ = 2106
        TRAILING_SL_CHANGED_EVENT = 2107
        CANCEL_ORDER_REQ = 2108
        EXECUTION_EVENT = 2126
        ORDER_ERROR_EVENT = 2132

        # Session-level events
        OA_ERROR_RES = 2142
        ACCOUNTS_TOKEN_INVALIDATED_EVENT = 2147
        CLIENT_DISCONNECT_EVENT = 2148
        ACCOUNT_DISCONNECT_EVENT = 2164

    # Replies that always mean "request failed"
    ERROR_PAYLOADS: Final = frozenset({
        PayloadType.ERROR_RES,
        PayloadType.OA_ERROR_RES,
        PayloadType.ORDER_ERROR_EVENT,
    })

    # ==================== ORDERS ====================
    class Order:
        """Order vocabulary (ProtoOA enums)."""

        class OrderType(IntEnum):
            """ProtoOAOrderType."""

            MARKET = 1
            LIMIT = 2
            STOP = 3
            STOP_LOSS_TAKE_PROFIT = 4
            MARKET_RANGE = 5
            STOP_LIMIT = 6

        class TradeSide(IntEnum):
            """ProtoOATradeSide."""

            BUY = 1
            SELL = 2

        class TimeInForce(IntEnum):
            """ProtoOATimeInForce."""

            GOOD_TILL_DATE = 1
            GOOD_TILL_CANCEL = 2
            IMMEDIATE_OR_CANCEL = 3
            FILL_OR_KILL = 4
            MARKET_ON_OPEN = 5

        class ExecutionType(IntEnum):
            """ProtoOAExecutionType."""

            ORDER_ACCEPTED = 2
            ORDER_FILLED = 3
            ORDER_REPLACED = 4
            ORDER_CANCELLED = 5
            ORDER_EXPIRED = 6
            ORDER_REJECTED = 7
            ORDER_CANCEL_REJECTED = 8
            SWAP = 9
            DEPOSIT_WITHDRAW = 10
            ORDER_PARTIAL_FILL = 11
            BONUS_DEPOSIT_WITHDRAW = 12

        REJECTED_EXECUTIONS: Final = frozenset({
            ExecutionType.ORDER_REJECTED,
            ExecutionType.ORDER_CANCEL_REJECTED,
        })

        # Order kinds accepted on the HTTP surface
        SUPPORTED_TYPES: Final = frozenset({
            OrderType.MARKET,
            OrderType.LIMIT,
            OrderType.STOP,
        })

        DEFAULT_TYPE: Final = OrderType.LIMIT
        COMMENT_MAX_LENGTH: Final = 512
        LABEL_MAX_LENGTH: Final = 100

    # ==================== AUTH ERRORS ====================
    class AuthError:
        """Gateway error codes seen during the handshake."""

        # Rejections that a fresh access token can fix
        TOKEN_ERROR_CODES: Final = frozenset({
            "CH_ACCESS_TOKEN_INVALID",
            "OA_AUTH_TOKEN_EXPIRED",
            "ACCESS_TOKEN_EXPIRED",
        })

    # ==================== SYMBOLS ====================
    class Symbols:
        """Static symbol name table (cTrader demo ids)."""

        DEFAULT_TABLE: Final = {
            "EURUSD": 1,
            "GBPUSD": 2,
            "EURJPY": 3,
            "USDJPY": 4,
            "AUDUSD": 5,
            "USDCHF": 6,
            "GBPJPY": 7,
            "USDCAD": 8,
            "EURGBP": 9,
            "EURCHF": 10,
        }

    # ==================== LOGGING ====================
    class Logging:
        """Log formatting defaults."""

        LEVEL: Final = "INFO"
        SECRET_VISIBLE_CHARS: Final = 4
        RAW_PAYLOAD_PREVIEW: Final = 500
