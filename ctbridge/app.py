"""HTTP surface of the bridge.

FastAPI application exposing:
    POST /order  - submit one order on the shared gateway session
    GET  /       - liveness plus the session and token readiness view

The lifespan starts the TokenManager and the Session and stops them in
reverse order. Bridge errors map to HTTP status through
``ERROR_STATUS_MAPPING``; request validation failures are reported as 400.

Usage:
    >>> from ctbridge.app import create_app
    >>> app = create_app()  # BridgeSettings() from the environment
    >>> # uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ctbridge import __version__
from ctbridge.constants import CTraderConstants as c
from ctbridge.exceptions import BridgeError, RequestTimeoutError, status_for_error
from ctbridge.gateway import OrderGateway
from ctbridge.models import BridgeModels
from ctbridge.resilience import SessionPhase
from ctbridge.session import Session
from ctbridge.settings import BridgeSettings
from ctbridge.tokens import TokenManager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

log = structlog.get_logger(__name__)


def _format_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{loc}: {message}" if loc else message)
    return "; ".join(parts) or "invalid request body"


def _log_execution_event(envelope: BridgeModels.Envelope) -> None:
    if envelope.payload_type in (
        c.PayloadType.EXECUTION_EVENT,
        c.PayloadType.ORDER_ERROR_EVENT,
    ):
        log.info(
            "unsolicited_order_event",
            payload_type=envelope.payload_type,
            execution_type=envelope.payload.get("executionType"),
            error_code=envelope.payload.get("errorCode"),
        )


def create_app(
    settings: BridgeSettings | None = None,
    *,
    tokens: TokenManager | None = None,
    session: Session | None = None,
) -> FastAPI:
    """Build the FastAPI application and its components.

    Args:
        settings: Configuration (loaded from the environment when None).
        tokens: Token manager to use instead of a default one.
        session: Session to use instead of a default websockets session.

    Returns:
        The configured application. Components are on ``app.state``.

    """
    settings = settings or BridgeSettings()
    tokens = tokens or TokenManager(settings)
    session = session or Session(settings, tokens)
    gateway = OrderGateway(session, settings)
    session.add_listener(_log_execution_event)
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        log.info(
            "bridge_starting",
            version=__version__,
            env=settings.env.value,
            account_id=settings.account_id,
        )
        await tokens.start()
        await session.start()
        try:
            yield
        finally:
            await session.stop()
            await tokens.close()
            log.info("bridge_stopped")

    app = FastAPI(
        title="cTrader Order Bridge",
        description="HTTP to cTrader Open API order bridge",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.tokens = tokens
    app.state.session = session
    app.state.gateway = gateway

    # =========================================================================
    # EXCEPTION HANDLERS
    # =========================================================================

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Report malformed or incomplete order bodies as 400."""
        message = _format_validation_error(exc)
        log.info("order_invalid", path=request.url.path, error=message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": message},
        )

    @app.exception_handler(BridgeError)
    async def bridge_exception_handler(request: Request, exc: BridgeError) -> JSONResponse:
        """Map the bridge exception hierarchy to HTTP responses."""
        status_code = status_for_error(exc)
        content: dict[str, Any] = {"error": exc.message}
        if exc.error_code is not None:
            content["code"] = exc.error_code
        if isinstance(exc, RequestTimeoutError):
            content["error"] = "No reply from gateway in time; order outcome unknown"
            content["outcome"] = "unknown"

        level = "warning" if status_code >= 500 else "info"
        getattr(log, level)(
            "order_failed",
            path=request.url.path,
            status_code=status_code,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return JSONResponse(status_code=status_code, content=content)

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.post("/order")
    async def submit_order(order: BridgeModels.OrderRequest) -> dict[str, Any]:
        """Submit one order and wait for the gateway's answer."""
        result = await gateway.submit(order)
        log.info("order_accepted", order_id=result.order_id, status=result.status)
        return result.to_response()

    @app.get("/")
    async def health() -> dict[str, Any]:
        """Liveness; the body carries the readiness view."""
        session_status = session.status()
        token_status = tokens.status()
        if session_status.is_healthy:
            overall = "ready"
        elif session_status.phase == SessionPhase.FAILED or token_status["fatal_error"]:
            overall = "failed"
        else:
            overall = "degraded"
        return {
            "status": overall,
            "version": __version__,
            "uptimeSeconds": round(time.monotonic() - started_at, 1),
            "session": session_status.to_dict(),
            "token": {
                "hasAccessToken": token_status["has_access_token"],
                "expiresInSeconds": token_status["expires_in"],
                "fatalError": token_status["fatal_error"],
            },
        }

    return app
