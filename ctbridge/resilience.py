"""Resilience primitives for the gateway session.

Implements the reconnect backoff counter and the state vocabulary used by
the session state machine and the health endpoint.

Hierarchy Level: 2
- Imports: settings.py (Level 1)
- Used by: session.py, app.py

Usage:
    >>> from ctbridge.resilience import ReconnectBackoff
    >>> backoff = ReconnectBackoff(settings)
    >>> delay = backoff.next_delay()  # 2s, 4s, 8s ... capped
    >>> backoff.reset()  # after a successful Ready transition

"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ctbridge.settings import BridgeSettings

log = logging.getLogger(__name__)


class SessionState(Enum):
    """Socket-level state of the session.

    Transitions:
        DISCONNECTED -> CONNECTING: start or reconnect delay elapsed.
        CONNECTING -> AWAITING_APP_AUTH: socket open, app auth sent.
        AWAITING_APP_AUTH -> AWAITING_ACCOUNT_AUTH: app auth acknowledged.
        AWAITING_ACCOUNT_AUTH -> READY: account auth acknowledged.
        any -> CLOSING: stop() requested.
        any -> DISCONNECTED: socket closed or errored.

    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_APP_AUTH = "awaiting_app_auth"
    AWAITING_ACCOUNT_AUTH = "awaiting_account_auth"
    READY = "ready"
    CLOSING = "closing"


class SessionPhase(Enum):
    """Operator-facing view of the session lifecycle."""

    STARTING = "starting"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class ReconnectBackoff:
    """Exponential reconnect backoff with an explicit attempt counter.

    The counter is the number of consecutive incarnations that failed to
    reach Ready. It is only reset by a Ready transition.

    Attributes:
        settings: BridgeSettings with reconnect_* values.
        rng: Random source for jitter.

    Example:
        >>> backoff = ReconnectBackoff(settings)
        >>> backoff.next_delay()
        2.1
        >>> backoff.attempt
        1

    """

    settings: BridgeSettings
    rng: random.Random = field(default_factory=random.Random)

    _attempt: int = field(default=0, init=False)

    @property
    def attempt(self) -> int:
        """Consecutive failed incarnations so far."""
        return self._attempt

    @property
    def exhausted(self) -> bool:
        """True once reconnect_max_attempts is reached."""
        limit = self.settings.reconnect_max_attempts
        return limit is not None and self._attempt >= limit

    def next_delay(self) -> float:
        """Return the delay before the next incarnation and count the attempt."""
        delay = self.settings.calculate_reconnect_delay(self._attempt, self.rng)
        self._attempt += 1
        return delay

    def reset(self) -> None:
        """Back to the initial delay (session reached Ready)."""
        if self._attempt:
            log.debug("Reconnect backoff reset after %d attempts", self._attempt)
        self._attempt = 0


@dataclass
class HealthStatus:
    """Health status snapshot of the session.

    Attributes:
        state: Socket-level state.
        phase: Operator-facing phase.
        generation: Current socket incarnation number.
        reconnect_attempt: Consecutive failed incarnations.
        last_error: Last error that ended an incarnation.

    """

    state: SessionState
    phase: SessionPhase
    generation: int
    reconnect_attempt: int = 0
    last_error: str | None = None

    @property
    def is_healthy(self) -> bool:
        """Check if the session can take orders."""
        return self.state == SessionState.READY

    def to_dict(self) -> dict[str, object]:
        """JSON-ready representation for the health endpoint."""
        return {
            "state": self.state.value,
            "phase": self.phase.value,
            "generation": self.generation,
            "reconnectAttempt": self.reconnect_attempt,
            "lastError": self.last_error,
        }
