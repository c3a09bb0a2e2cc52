"""Request/response correlation over one shared socket.

Each socket incarnation owns exactly one RequestCorrelator. Outbound messages
that expect a reply get a ``clientMsgId``; the gateway echoes it back and
``dispatch()`` resolves the matching future. Anything without a match is an
unsolicited event and goes to the event handler instead.

Every PendingRequest leaves the map exactly once: by reply, by timeout, or by
``reject_all()`` when the connection closes. Whoever pops the entry owns its
resolution.

Example:
    >>> correlator = RequestCorrelator(transmit=send_frame, on_event=handle)
    >>> reply = await correlator.send(message, timeout=10.0)
    >>> # reader loop
    >>> correlator.dispatch(envelope)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ctbridge.constants import CTraderConstants as c
from ctbridge.exceptions import RequestTimeoutError, SessionClosedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ctbridge.models import BridgeModels

log = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """A correlated request waiting for its reply."""

    correlation_id: str
    future: asyncio.Future[BridgeModels.Envelope]
    timeout_handle: asyncio.TimerHandle | None = None
    created_at: float = field(default_factory=time.monotonic)
    payload_type: int | None = None


class RequestCorrelator:
    """Tracks pending replies for one socket incarnation.

    Args:
        transmit: Coroutine function sending one wire message (a dict).
        on_event: Called with every inbound envelope that matches no request.
        generation: Socket incarnation number, for logs and errors.

    """

    def __init__(
        self,
        transmit: Callable[[dict[str, Any]], Awaitable[None]],
        on_event: Callable[[BridgeModels.Envelope], None] | None = None,
        *,
        generation: int = 0,
    ) -> None:
        self._transmit = transmit
        self._on_event = on_event
        self._generation = generation
        self._pending: dict[str, PendingRequest] = {}
        self._closed_error: BaseException | None = None

    @property
    def generation(self) -> int:
        """Socket incarnation this correlator belongs to."""
        return self._generation

    @property
    def pending_count(self) -> int:
        """Number of requests still waiting for a reply."""
        return len(self._pending)

    @property
    def is_closed(self) -> bool:
        """True once reject_all() has run."""
        return self._closed_error is not None

    def new_correlation_id(self) -> str:
        """Generate a unique correlation id."""
        return f"g{self._generation}-{uuid.uuid4().hex[:16]}"

    async def send(
        self,
        message: dict[str, Any],
        timeout: float,  # noqa: ASYNC109
    ) -> BridgeModels.Envelope:
        """Send a message and wait for the reply carrying the same id.

        Args:
            message: Wire message; ``clientMsgId`` is added when absent.
            timeout: Seconds to wait for the reply.

        Returns:
            The first inbound envelope with the same correlation id.

        Raises:
            RequestTimeoutError: No reply within ``timeout``.
            SessionClosedError: Connection closed before or while waiting.
            ValueError: Explicit correlation id already pending.

        """
        if self._closed_error is not None:
            raise SessionClosedError(generation=self._generation) from self._closed_error

        key = c.Envelope.CLIENT_MSG_ID
        correlation_id = message.get(key) or self.new_correlation_id()
        message[key] = correlation_id
        if correlation_id in self._pending:
            msg = f"correlation id {correlation_id!r} is already pending"
            raise ValueError(msg)

        loop = asyncio.get_running_loop()
        entry = PendingRequest(
            correlation_id=correlation_id,
            future=loop.create_future(),
            payload_type=message.get(c.Envelope.PAYLOAD_TYPE),
        )
        entry.timeout_handle = loop.call_later(
            timeout, self._expire, correlation_id, timeout
        )
        self._pending[correlation_id] = entry

        try:
            await self._transmit(message)
        except Exception as e:
            # reject_all() may already have popped the entry
            self._pop(correlation_id)
            raise SessionClosedError(
                "Send failed", generation=self._generation
            ) from e

        return await entry.future

    def dispatch(self, envelope: BridgeModels.Envelope) -> bool:
        """Route an inbound envelope.

        Args:
            envelope: Decoded inbound frame.

        Returns:
            True if it resolved a pending request, False if it was routed to
            the event handler as unsolicited.

        """
        entry = None
        if envelope.client_msg_id is not None:
            entry = self._pop(envelope.client_msg_id)

        if entry is None:
            if self._on_event is not None:
                self._on_event(envelope)
            return False

        if not entry.future.done():
            entry.future.set_result(envelope)
        log.debug(
            "Resolved %s (payloadType=%d) after %.3fs",
            entry.correlation_id,
            envelope.payload_type,
            time.monotonic() - entry.created_at,
        )
        return True

    def reject_all(self, error: BaseException | None = None) -> int:
        """Reject every pending request and refuse new ones.

        Args:
            error: Exception set on each future (SessionClosedError if None).

        Returns:
            Number of requests rejected.

        """
        if error is None:
            error = SessionClosedError(generation=self._generation)
        self._closed_error = error

        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            if entry.timeout_handle is not None:
                entry.timeout_handle.cancel()
            if not entry.future.done():
                entry.future.set_exception(error)
        if entries:
            log.info(
                "Rejected %d pending request(s) of generation %d: %s",
                len(entries),
                self._generation,
                error,
            )
        return len(entries)

    def _pop(self, correlation_id: str) -> PendingRequest | None:
        entry = self._pending.pop(correlation_id, None)
        if entry is not None and entry.timeout_handle is not None:
            entry.timeout_handle.cancel()
        return entry

    def _expire(self, correlation_id: str, timeout: float) -> None:
        entry = self._pending.pop(correlation_id, None)
        if entry is None:
            return
        log.warning(
            "Request %s (payloadType=%s) timed out after %.1fs",
            correlation_id,
            entry.payload_type,
            timeout,
        )
        if not entry.future.done():
            entry.future.set_exception(
                RequestTimeoutError(correlation_id=correlation_id, timeout=timeout)
            )
