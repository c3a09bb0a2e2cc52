"""Gateway session: one persistent WebSocket, authenticated, kept alive.

The Session owns the socket to the cTrader Open API gateway and drives it
through the handshake:

    CONNECTING -> AWAITING_APP_AUTH -> AWAITING_ACCOUNT_AUTH -> READY

Every reconnect starts a new incarnation with its own generation number,
socket and RequestCorrelator. Socket callbacks and auth completions are
turned into tagged events on a single queue and consumed by one transition
function, so state only ever changes in one place. Events carrying an older
generation are discarded.

A single supervisor task runs incarnations one after another, waiting the
backoff delay in between. There is never more than one reconnect in flight.

Example:
    >>> session = Session(settings, tokens)
    >>> await session.start()
    >>> await session.wait_ready(timeout=30)
    >>> reply = await session.request(message, timeout=10)
    >>> await session.stop()
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from ctbridge import protocol
from ctbridge.constants import CTraderConstants as c
from ctbridge.correlator import RequestCorrelator
from ctbridge.exceptions import (
    BridgeAuthenticationError,
    RefreshTokenRevokedError,
    RequestTimeoutError,
    SessionClosedError,
    SessionNotReadyError,
    TokenRefreshError,
)
from ctbridge.resilience import (
    HealthStatus,
    ReconnectBackoff,
    SessionPhase,
    SessionState,
)

if TYPE_CHECKING:
    import random
    from collections.abc import Awaitable, Callable

    from ctbridge.models import BridgeModels
    from ctbridge.protocols import Connector, EventListener, TokenProvider, Transport
    from ctbridge.settings import BridgeSettings

log = structlog.get_logger(__name__)

APP_STEP = "application"
ACCOUNT_STEP = "account"


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True)
class Opened:
    """Socket of this generation is open."""

    generation: int


@dataclass(frozen=True)
class MessageReceived:
    """Inbound frame, already decoded."""

    generation: int
    envelope: BridgeModels.Envelope


@dataclass(frozen=True)
class Closed:
    """Socket closed (cleanly or by the peer)."""

    generation: int
    reason: str = ""


@dataclass(frozen=True)
class Errored:
    """Socket failed with an exception."""

    generation: int
    error: BaseException


@dataclass(frozen=True)
class AuthReplied:
    """A correlated auth request finished, with a reply or an error."""

    generation: int
    step: str
    reply: BridgeModels.Envelope | None = None
    error: BaseException | None = None


type SessionEvent = Opened | MessageReceived | Closed | Errored | AuthReplied


# =============================================================================
# SESSION
# =============================================================================


class Session:
    """Authenticated cTrader gateway session with reconnect.

    Args:
        settings: BridgeSettings (endpoint, timeouts, reconnect policy).
        tokens: Source of access tokens.
        connector: Opens a Transport for a URL (websockets by default).
        rng: Random source for backoff jitter.
        sleep: Coroutine used for the reconnect delay.

    """

    def __init__(
        self,
        settings: BridgeSettings,
        tokens: TokenProvider,
        *,
        connector: Connector | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._tokens = tokens
        self._connector: Connector = connector or self._open_websocket
        self._sleep = sleep
        self._backoff = (
            ReconnectBackoff(settings, rng) if rng else ReconnectBackoff(settings)
        )
        self._log = log.bind(account_id=settings.account_id)

        self._state = SessionState.DISCONNECTED
        self._phase = SessionPhase.STARTING
        self._generation = 0
        self._last_error: str | None = None
        self._fatal: BaseException | None = None
        self._stopping = False
        self._token_retry_used = False

        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._supervisor: asyncio.Task[None] | None = None
        self._transport: Transport | None = None
        self._correlator: RequestCorrelator | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._ready = asyncio.Event()
        self._listeners: list[EventListener] = []
        self.heartbeats_sent = 0

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> SessionState:
        """Socket-level state."""
        return self._state

    @property
    def phase(self) -> SessionPhase:
        """Operator-facing phase."""
        return self._phase

    @property
    def generation(self) -> int:
        """Current incarnation number (0 before the first connect)."""
        return self._generation

    @property
    def is_ready(self) -> bool:
        """True when orders can be sent."""
        return self._state == SessionState.READY

    @property
    def fatal_error(self) -> BaseException | None:
        """Error that stopped the session for good, if any."""
        return self._fatal

    @property
    def reconnect_attempt(self) -> int:
        """Consecutive incarnations that failed to reach Ready."""
        return self._backoff.attempt

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def start(self) -> None:
        """Start the supervisor. Returns immediately; use wait_ready()."""
        if self._supervisor is not None and not self._supervisor.done():
            return
        self._stopping = False
        self._phase = SessionPhase.STARTING
        self._supervisor = asyncio.get_running_loop().create_task(
            self._supervise(), name="ctbridge-session"
        )
        self._log.info("session_started", endpoint=self._settings.ws_endpoint)

    async def stop(self) -> None:
        """Close the socket, reject pending requests and stop reconnecting."""
        self._stopping = True
        if self._state != SessionState.DISCONNECTED:
            self._set_state(SessionState.CLOSING)
        if self._supervisor is not None:
            self._supervisor.cancel()
            with suppress(asyncio.CancelledError):
                await self._supervisor
            self._supervisor = None
        self._set_state(SessionState.DISCONNECTED)
        self._phase = SessionPhase.STOPPED
        self._log.info("session_stopped", generation=self._generation)

    async def wait_ready(self, timeout: float | None = None) -> bool:  # noqa: ASYNC109
        """Wait until the session is Ready. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def request(
        self,
        message: dict[str, Any],
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> BridgeModels.Envelope:
        """Send a correlated request on the Ready socket.

        Raises:
            SessionNotReadyError: Not authenticated; nothing was sent.
            SessionClosedError: Socket closed before the reply.
            RequestTimeoutError: No reply in time.

        """
        correlator = self._correlator
        if self._state != SessionState.READY or correlator is None:
            raise SessionNotReadyError(state=self._state.value)
        if timeout is None:
            timeout = self._settings.request_timeout
        return await correlator.send(message, timeout)

    def add_listener(self, callback: EventListener) -> None:
        """Receive every unsolicited envelope (execution events, errors...)."""
        self._listeners.append(callback)

    def status(self) -> HealthStatus:
        """Health snapshot."""
        return HealthStatus(
            state=self._state,
            phase=self._phase,
            generation=self._generation,
            reconnect_attempt=self._backoff.attempt,
            last_error=self._last_error,
        )

    # =========================================================================
    # SUPERVISOR
    # =========================================================================

    async def _supervise(self) -> None:
        while not self._stopping:
            if self._tokens.fatal_error is not None:
                self._fail(self._tokens.fatal_error)
            if self._fatal is not None:
                break

            self._generation += 1
            await self._run_incarnation(self._generation)

            if self._stopping or self._fatal is not None:
                break
            if self._backoff.exhausted:
                self._fail(
                    SessionClosedError(
                        f"Gave up after {self._backoff.attempt} reconnect attempts",
                        generation=self._generation,
                    )
                )
                break

            delay = self._backoff.next_delay()
            self._phase = SessionPhase.RECONNECTING
            self._log.warning(
                "session_reconnect_scheduled",
                delay=round(delay, 2),
                attempt=self._backoff.attempt,
                last_error=self._last_error,
            )
            await self._sleep(delay)

    async def _run_incarnation(self, generation: int) -> None:
        """Connect, authenticate and serve one socket until it ends."""
        self._set_state(SessionState.CONNECTING)
        self._phase = SessionPhase.CONNECTING
        url = self._settings.ws_endpoint
        self._log.info("session_connecting", generation=generation, url=url)

        try:
            transport = await self._connector(url)
        except Exception as e:  # noqa: BLE001 - any connect failure means retry
            self._last_error = f"connect failed: {e}"
            self._log.warning("session_connect_failed", generation=generation, error=str(e))
            self._set_state(SessionState.DISCONNECTED)
            return

        self._transport = transport
        self._correlator = RequestCorrelator(
            self._transmit_for(transport), generation=generation
        )
        self._spawn(self._read(transport, generation), "reader")
        self._events.put_nowait(Opened(generation))

        try:
            while True:
                event = await self._events.get()
                if event.generation != generation:
                    self._log.debug(
                        "stale_event_dropped",
                        event_type=type(event).__name__,
                        event_generation=event.generation,
                        generation=generation,
                    )
                    continue
                if self._handle(event):
                    break
        finally:
            await self._teardown(generation)

    async def _teardown(self, generation: int) -> None:
        self._ready.clear()
        if self._correlator is not None:
            self._correlator.reject_all(SessionClosedError(generation=generation))
            self._correlator = None
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        transport, self._transport = self._transport, None
        if transport is not None:
            with suppress(Exception):
                await asyncio.wait_for(transport.close(), c.Network.WS_CLOSE_TIMEOUT)
        self._set_state(SessionState.DISCONNECTED)
        self._log.info(
            "session_disconnected", generation=generation, last_error=self._last_error
        )

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _handle(self, event: SessionEvent) -> bool:
        """Apply one event. Returns True when the incarnation must end."""
        if isinstance(event, Opened):
            self._set_state(SessionState.AWAITING_APP_AUTH)
            self._phase = SessionPhase.AUTHENTICATING
            self._spawn(self._authenticate(event.generation, APP_STEP), "app-auth")
            return False

        if isinstance(event, AuthReplied):
            return self._on_auth_reply(event)

        if isinstance(event, MessageReceived):
            correlator = self._correlator
            if correlator is not None and correlator.dispatch(event.envelope):
                return False
            return self._on_unsolicited(event.envelope)

        if isinstance(event, Closed):
            self._last_error = f"socket closed: {event.reason}" if event.reason else "socket closed"
            self._log.warning("socket_closed", generation=event.generation, reason=event.reason)
            return True

        if isinstance(event, Errored):
            self._last_error = f"socket error: {event.error}"
            self._log.warning(
                "socket_error", generation=event.generation, error=str(event.error)
            )
            return True

        return False

    def _on_auth_reply(self, event: AuthReplied) -> bool:
        step = event.step
        if event.error is not None:
            return self._on_auth_error(step, event.error)

        reply = event.reply
        if reply is None:
            self._last_error = f"{step} auth finished without a reply"
            return True
        expected = (
            c.PayloadType.APPLICATION_AUTH_RES
            if step == APP_STEP
            else c.PayloadType.ACCOUNT_AUTH_RES
        )

        if reply.payload_type == expected:
            if step == APP_STEP:
                self._set_state(SessionState.AWAITING_ACCOUNT_AUTH)
                self._log.info("application_authenticated", generation=event.generation)
                self._spawn(
                    self._authenticate(event.generation, ACCOUNT_STEP), "account-auth"
                )
                return False
            self._on_ready(event.generation)
            return False

        if reply.is_error:
            return self._on_auth_rejected(step, reply)

        self._last_error = f"{step} auth: unexpected payloadType {reply.payload_type}"
        self._log.warning(
            "auth_unexpected_reply",
            step=step,
            payload_type=reply.payload_type,
            raw=protocol.preview(reply),
        )
        return True

    def _on_auth_rejected(self, step: str, reply: BridgeModels.Envelope) -> bool:
        code = reply.error_code
        description = reply.description or "no description"
        self._last_error = f"{step} auth rejected: [{code}] {description}"

        if code in self._settings.token_error_codes:
            if not self._token_retry_used:
                # one reconnect with a refreshed token, then the rejection is final
                self._token_retry_used = True
                self._log.warning(
                    "auth_token_rejected", step=step, error_code=code, description=description
                )
                self._tokens.invalidate()
                return True

        self._log.error(
            "auth_rejected", step=step, error_code=code, description=description
        )
        self._fail(BridgeAuthenticationError(description, error_code=code, step=step))
        return True

    def _on_auth_error(self, step: str, error: BaseException) -> bool:
        if isinstance(error, RefreshTokenRevokedError):
            self._fail(error)
            return True
        if isinstance(error, SessionClosedError):
            # the Closed/Errored event that follows ends the incarnation
            return False
        if isinstance(error, RequestTimeoutError):
            self._last_error = f"{step} auth timed out"
        elif isinstance(error, TokenRefreshError):
            self._last_error = f"{step} auth: {error}"
        else:
            self._last_error = f"{step} auth failed: {error}"
        self._log.warning("auth_failed", step=step, error=str(error))
        return True

    def _on_ready(self, generation: int) -> None:
        self._set_state(SessionState.READY)
        self._phase = SessionPhase.READY
        self._backoff.reset()
        self._token_retry_used = False
        self._last_error = None
        self._ready.set()
        self._spawn(self._heartbeat(generation), "heartbeat")
        self._log.info("session_ready", generation=generation)

    def _on_unsolicited(self, envelope: BridgeModels.Envelope) -> bool:
        payload_type = envelope.payload_type

        if payload_type == c.PayloadType.HEARTBEAT_EVENT:
            if self._settings.heartbeat_echo and self._transport is not None:
                self._spawn(self._send_heartbeat(self._transport), "heartbeat-echo")
            return False

        if payload_type == c.PayloadType.ACCOUNTS_TOKEN_INVALIDATED_EVENT:
            self._last_error = "access token invalidated by gateway"
            self._log.warning("token_invalidated_by_gateway", payload=envelope.payload)
            self._tokens.invalidate()
            return True

        if payload_type == c.PayloadType.CLIENT_DISCONNECT_EVENT:
            self._log.warning(
                "client_disconnect_event", reason=envelope.payload.get("reason")
            )
        else:
            self._log.debug(
                "unsolicited_event",
                payload_type=payload_type,
                client_msg_id=envelope.client_msg_id,
            )

        for callback in list(self._listeners):
            try:
                callback(envelope)
            except Exception:
                self._log.exception("listener_failed", payload_type=payload_type)
        return False

    # =========================================================================
    # TASKS
    # =========================================================================

    async def _authenticate(self, generation: int, step: str) -> None:
        correlator = self._correlator
        try:
            if correlator is None:
                raise SessionClosedError(generation=generation)
            if step == APP_STEP:
                token = None
                if self._settings.app_auth_includes_token:
                    token = await self._tokens.get_valid_token()
                message = protocol.application_auth(self._settings, token)
            else:
                token = await self._tokens.get_valid_token()
                message = protocol.account_auth(self._settings, token)
            reply = await correlator.send(message, self._settings.request_timeout)
        except Exception as e:  # noqa: BLE001 - delivered to the transition function
            self._events.put_nowait(AuthReplied(generation, step, error=e))
        else:
            self._events.put_nowait(AuthReplied(generation, step, reply=reply))

    async def _heartbeat(self, generation: int) -> None:
        transport = self._transport
        if transport is None:
            return
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval)
            try:
                await self._send_heartbeat(transport)
            except Exception as e:  # noqa: BLE001
                self._events.put_nowait(Errored(generation, e))
                return

    async def _send_heartbeat(self, transport: Transport) -> None:
        await transport.send(protocol.encode(protocol.heartbeat()))
        self.heartbeats_sent += 1

    async def _read(self, transport: Transport, generation: int) -> None:
        try:
            async for frame in transport:
                try:
                    envelope = protocol.decode(frame)
                except protocol.ProtocolError as e:
                    self._log.warning("frame_dropped", generation=generation, error=str(e))
                    continue
                self._events.put_nowait(MessageReceived(generation, envelope))
        except ConnectionClosed as e:
            self._events.put_nowait(Closed(generation, reason=str(e)))
        except Exception as e:  # noqa: BLE001
            self._events.put_nowait(Errored(generation, e))
        else:
            self._events.put_nowait(Closed(generation))

    def _transmit_for(
        self, transport: Transport
    ) -> Callable[[dict[str, Any]], Awaitable[None]]:
        async def transmit(message: dict[str, Any]) -> None:
            self._log.debug(
                "frame_sent",
                payload_type=message.get(c.Envelope.PAYLOAD_TYPE),
                client_msg_id=message.get(c.Envelope.CLIENT_MSG_ID),
            )
            await transport.send(protocol.encode(message))

        return transmit

    async def _open_websocket(self, url: str) -> Transport:
        return await connect(
            url,
            open_timeout=self._settings.ws_open_timeout,
            close_timeout=c.Network.WS_CLOSE_TIMEOUT,
            max_size=c.Network.WS_MAX_MESSAGE_SIZE,
            # the gateway expects application heartbeats, not ping frames
            ping_interval=None,
        )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(f"ctbridge-{name}-g{self._generation}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            self._log.debug("state_changed", old=self._state.value, new=state.value)
            self._state = state

    def _fail(self, error: BaseException) -> None:
        self._fatal = error
        self._last_error = str(error)
        self._phase = SessionPhase.FAILED
        self._log.error("session_failed", error=str(error))
