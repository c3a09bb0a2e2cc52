"""Pydantic 2 models for ctbridge.

Type-safe models for the HTTP order surface and the gateway wire frames.

Hierarchy Level: 2
- Imports: CTraderConstants (Level 0)
- Used by: protocol.py, correlator.py, gateway.py, app.py

Usage:

    # Validate an inbound HTTP order body
    request = BridgeModels.OrderRequest.model_validate(body)

    # Parse a gateway frame
    envelope = BridgeModels.Envelope.model_validate(frame)
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ctbridge.constants import CTraderConstants as c


def _enum_by_name[E: IntEnum](enum_cls: type[E], value: object) -> object:
    """Accept enum members by name ("buy", "MARKET") as well as by code."""
    if isinstance(value, str):
        if value.strip().isdigit():
            return int(value)
        key = value.strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return enum_cls[key]
        except KeyError:
            names = ", ".join(member.name for member in enum_cls)
            msg = f"unknown value {value!r}, expected one of: {names}"
            raise ValueError(msg) from None
    return value


class BridgeModels:
    """Container for all ctbridge Pydantic models.

    All models are nested for clean namespace:
    - Envelope: one JSON frame on the gateway socket
    - OrderRequest: HTTP order body with validation
    - OrderResult: successful order outcome
    """

    class Envelope(BaseModel):
        """A gateway frame: payloadType, payload and optional clientMsgId."""

        model_config = ConfigDict(frozen=True, populate_by_name=True)

        payload_type: int = Field(alias=c.Envelope.PAYLOAD_TYPE)
        payload: dict[str, Any] = Field(default_factory=dict, alias=c.Envelope.PAYLOAD)
        client_msg_id: str | None = Field(default=None, alias=c.Envelope.CLIENT_MSG_ID)

        @field_validator("payload", mode="before")
        @classmethod
        def _none_payload(cls, value: object) -> object:
            return {} if value is None else value

        @field_validator("client_msg_id", mode="before")
        @classmethod
        def _str_client_msg_id(cls, value: object) -> object:
            return value if value is None else str(value)

        @property
        def is_error(self) -> bool:
            """Frame is one of the error payload kinds."""
            return self.payload_type in c.ERROR_PAYLOADS

        @property
        def error_code(self) -> str | None:
            """errorCode carried by an error frame, if any."""
            code = self.payload.get("errorCode")
            return None if code is None else str(code)

        @property
        def description(self) -> str:
            """Human readable reason carried by an error frame."""
            return str(
                self.payload.get("description")
                or self.payload.get("errorCode")
                or "no description"
            )

        def to_wire(self) -> dict[str, Any]:
            """Plain dict in wire field names."""
            return self.model_dump(by_alias=True, exclude_none=True)

    class OrderRequest(BaseModel):
        """HTTP order request with validation.

        Accepts the flat body of ``POST /order``. Prices may be supplied as
        ``price`` or explicitly as ``limitPrice`` / ``stopPrice``.

        Example:
            >>> request = BridgeModels.OrderRequest.model_validate(
            ...     {"symbolId": 1, "side": "BUY", "volume": 100000, "type": "MARKET"}
            ... )

        """

        model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

        symbol_id: int | None = Field(default=None, alias="symbolId", gt=0)
        symbol: str | None = Field(default=None, min_length=1)
        side: c.Order.TradeSide
        volume: int = Field(gt=0)
        type: c.Order.OrderType = c.Order.DEFAULT_TYPE
        price: float | None = Field(default=None, gt=0)
        limit_price: float | None = Field(default=None, alias="limitPrice", gt=0)
        stop_price: float | None = Field(default=None, alias="stopPrice", gt=0)
        tp: float | None = Field(default=None, gt=0)
        sl: float | None = Field(default=None, gt=0)
        time_in_force: c.Order.TimeInForce | None = Field(
            default=None, alias="timeInForce"
        )
        label: str | None = Field(default=None, max_length=c.Order.LABEL_MAX_LENGTH)
        comment: str | None = Field(default=None, max_length=c.Order.COMMENT_MAX_LENGTH)

        @field_validator("side", mode="before")
        @classmethod
        def _side_by_name(cls, value: object) -> object:
            return _enum_by_name(c.Order.TradeSide, value)

        @field_validator("type", mode="before")
        @classmethod
        def _type_by_name(cls, value: object) -> object:
            if value is None:
                return c.Order.DEFAULT_TYPE
            return _enum_by_name(c.Order.OrderType, value)

        @field_validator("time_in_force", mode="before")
        @classmethod
        def _tif_by_name(cls, value: object) -> object:
            return _enum_by_name(c.Order.TimeInForce, value)

        @model_validator(mode="after")
        def _check_consistency(self) -> Self:
            if self.symbol_id is None and not self.symbol:
                msg = "symbolId or symbol is required"
                raise ValueError(msg)
            if self.type not in c.Order.SUPPORTED_TYPES:
                msg = f"order type {self.type.name} is not supported"
                raise ValueError(msg)
            if self.type == c.Order.OrderType.LIMIT and self.effective_limit_price is None:
                msg = "price (or limitPrice) is required for LIMIT orders"
                raise ValueError(msg)
            if self.type == c.Order.OrderType.STOP and self.effective_stop_price is None:
                msg = "price (or stopPrice) is required for STOP orders"
                raise ValueError(msg)
            return self

        @property
        def effective_limit_price(self) -> float | None:
            """Limit price for LIMIT orders."""
            if self.type != c.Order.OrderType.LIMIT:
                return None
            return self.limit_price if self.limit_price is not None else self.price

        @property
        def effective_stop_price(self) -> float | None:
            """Trigger price for STOP orders."""
            if self.type != c.Order.OrderType.STOP:
                return None
            return self.stop_price if self.stop_price is not None else self.price

    class OrderResult(BaseModel):
        """Successful order outcome echoed to the HTTP caller.

        ``order_id`` is copied verbatim from the gateway reply.
        """

        model_config = ConfigDict(frozen=True, populate_by_name=True)

        order_id: str | int = Field(alias="orderId")
        status: str
        position_id: str | int | None = Field(default=None, alias="positionId")

        def to_response(self) -> dict[str, Any]:
            """Body of the HTTP 200 response."""
            return self.model_dump(by_alias=True, exclude_none=True)
