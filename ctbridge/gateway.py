"""Order submission over the gateway session.

Turns a validated OrderRequest into a NEW_ORDER_REQ, sends it through the
Ready session and maps the correlated reply to an OrderResult or an error.
Orders are never queued or resubmitted: if the session is not Ready the
caller gets SessionNotReadyError, and a timeout leaves the outcome unknown.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ctbridge import protocol
from ctbridge.constants import CTraderConstants as c
from ctbridge.exceptions import (
    OrderRejectedError,
    OrderValidationError,
    SessionNotReadyError,
    UnexpectedReplyError,
)
from ctbridge.models import BridgeModels

if TYPE_CHECKING:
    from ctbridge.session import Session
    from ctbridge.settings import BridgeSettings

log = logging.getLogger(__name__)


class OrderGateway:
    """Submits orders for the configured account.

    Args:
        session: The shared gateway session.
        settings: BridgeSettings (account id, symbol table, order timeout).

    """

    def __init__(self, session: Session, settings: BridgeSettings) -> None:
        self._session = session
        self._settings = settings
        self._symbols = {name.upper(): sid for name, sid in settings.symbols.items()}

    def resolve_symbol(self, request: BridgeModels.OrderRequest) -> int:
        """Numeric symbol id for the request.

        Raises:
            OrderValidationError: Symbol name not in the symbol table.

        """
        if request.symbol_id is not None:
            return request.symbol_id
        name = (request.symbol or "").strip().upper()
        symbol_id = self._symbols.get(name)
        if symbol_id is None:
            msg = f"Unknown symbol {request.symbol!r}"
            raise OrderValidationError(msg, field="symbol")
        return symbol_id

    async def submit(self, request: BridgeModels.OrderRequest) -> BridgeModels.OrderResult:
        """Send one order and wait for its execution or rejection.

        Raises:
            SessionNotReadyError: Session not Ready; nothing was sent.
            OrderValidationError: Symbol cannot be resolved.
            OrderRejectedError: Broker rejected the order.
            RequestTimeoutError: No reply within order_timeout.
            SessionClosedError: Socket closed while waiting.
            UnexpectedReplyError: Reply of an unknown shape.

        """
        if not self._session.is_ready:
            raise SessionNotReadyError(state=self._session.state.value)

        symbol_id = self.resolve_symbol(request)
        message = protocol.new_order(
            request, account_id=self._settings.account_id, symbol_id=symbol_id
        )
        log.info(
            "Submitting %s %s order: symbolId=%d volume=%d",
            request.type.name,
            request.side.name,
            symbol_id,
            request.volume,
        )
        reply = await self._session.request(message, timeout=self._settings.order_timeout)
        return self.interpret(reply)

    def interpret(self, reply: BridgeModels.Envelope) -> BridgeModels.OrderResult:
        """Map a correlated reply to a result, raising for rejections."""
        payload = reply.payload

        if reply.payload_type == c.PayloadType.EXECUTION_EVENT:
            order = payload.get("order") or {}
            order_id = order.get("orderId", payload.get("orderId"))
            execution_type = payload.get("executionType")

            if execution_type in c.Order.REJECTED_EXECUTIONS:
                log.warning("Order %s rejected: %s", order_id, payload.get("errorCode"))
                raise OrderRejectedError(
                    str(payload.get("errorCode") or "Order rejected"),
                    error_code=payload.get("errorCode"),
                    order_id=order_id,
                )
            if order_id is None:
                log.error("Execution event without orderId: %s", protocol.preview(reply))
                raise UnexpectedReplyError(
                    "Execution event carries no orderId", payload_type=reply.payload_type
                )

            position = payload.get("position") or {}
            result = BridgeModels.OrderResult(
                order_id=order_id,
                status=_execution_name(execution_type),
                position_id=order.get("positionId", position.get("positionId")),
            )
            log.info("Order %s %s", result.order_id, result.status)
            return result

        if reply.is_error:
            log.warning(
                "Order rejected by gateway: [%s] %s", reply.error_code, reply.description
            )
            raise OrderRejectedError(
                reply.description,
                error_code=reply.error_code,
                order_id=payload.get("orderId"),
            )

        log.error(
            "Unexpected reply to order (payloadType=%d): %s",
            reply.payload_type,
            protocol.preview(reply),
        )
        raise UnexpectedReplyError(payload_type=reply.payload_type)


def _execution_name(execution_type: object) -> str:
    try:
        return c.Order.ExecutionType(execution_type).name
    except ValueError:
        return str(execution_type)
