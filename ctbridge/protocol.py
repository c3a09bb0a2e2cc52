"""Wire codec for the cTrader Open API JSON socket.

Frames are JSON objects ``{"clientMsgId", "payloadType", "payload"}``.
This module encodes and decodes frames and builds the handful of messages the
bridge sends. Payload type and enum codes come from CTraderConstants.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import orjson
from pydantic import ValidationError

from ctbridge.constants import CTraderConstants as c
from ctbridge.models import BridgeModels

if TYPE_CHECKING:
    from ctbridge.settings import BridgeSettings


class ProtocolError(ValueError):
    """Inbound frame is not valid JSON or lacks a payloadType."""


def encode(message: dict[str, Any]) -> str:
    """Serialize a wire message to a text frame."""
    return orjson.dumps(message).decode()


def decode(frame: str | bytes) -> BridgeModels.Envelope:
    """Parse a text frame into an Envelope.

    Raises:
        ProtocolError: Frame is not a JSON object with a payloadType.

    """
    try:
        data = orjson.loads(frame)
    except orjson.JSONDecodeError as e:
        msg = f"frame is not valid JSON: {e}"
        raise ProtocolError(msg) from e
    if not isinstance(data, dict):
        msg = f"frame is not a JSON object: {type(data).__name__}"
        raise ProtocolError(msg)
    try:
        return BridgeModels.Envelope.model_validate(data)
    except ValidationError as e:
        msg = f"frame has no usable payloadType: {e.error_count()} error(s)"
        raise ProtocolError(msg) from e


def message(payload_type: int, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a wire message without a correlation id."""
    return {
        c.Envelope.PAYLOAD_TYPE: int(payload_type),
        c.Envelope.PAYLOAD: payload or {},
    }


def heartbeat() -> dict[str, Any]:
    """Heartbeat event, sent uncorrelated."""
    return message(c.PayloadType.HEARTBEAT_EVENT)


def application_auth(settings: BridgeSettings, access_token: str | None = None) -> dict[str, Any]:
    """Application authentication request (first handshake step)."""
    payload: dict[str, Any] = {
        "clientId": settings.client_id,
        "clientSecret": settings.client_secret.get_secret_value(),
    }
    if settings.app_auth_includes_token and access_token:
        payload["accessToken"] = access_token
    return message(c.PayloadType.APPLICATION_AUTH_REQ, payload)


def account_auth(settings: BridgeSettings, access_token: str) -> dict[str, Any]:
    """Account authentication request (second handshake step)."""
    return message(
        c.PayloadType.ACCOUNT_AUTH_REQ,
        {
            "ctidTraderAccountId": settings.account_id,
            "accessToken": access_token,
        },
    )


def new_order(
    request: BridgeModels.OrderRequest,
    *,
    account_id: int,
    symbol_id: int,
) -> dict[str, Any]:
    """New order request for a validated OrderRequest.

    Args:
        request: Validated HTTP order request.
        account_id: ctidTraderAccountId of the authenticated account.
        symbol_id: Resolved numeric symbol id.

    """
    payload: dict[str, Any] = {
        "ctidTraderAccountId": account_id,
        "symbolId": symbol_id,
        "orderType": int(request.type),
        "tradeSide": int(request.side),
        "volume": request.volume,
    }
    optional = {
        "limitPrice": request.effective_limit_price,
        "stopPrice": request.effective_stop_price,
        "takeProfit": request.tp,
        "stopLoss": request.sl,
        "timeInForce": None if request.time_in_force is None else int(request.time_in_force),
        "label": request.label,
        "comment": request.comment,
    }
    payload.update({k: v for k, v in optional.items() if v is not None})
    return message(c.PayloadType.NEW_ORDER_REQ, payload)


def preview(envelope: BridgeModels.Envelope) -> str:
    """Truncated raw form of an envelope for logs."""
    return encode(envelope.to_wire())[: c.Logging.RAW_PAYLOAD_PREVIEW]
