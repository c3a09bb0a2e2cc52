"""OAuth token lifecycle for the cTrader Open API.

The TokenManager owns the access/refresh token pair. It exchanges the refresh
token for an access token over HTTPS, rotates the refresh token when the
provider returns a new one, and refreshes again on its own timer shortly
before the access token expires. It knows nothing about the socket.

Failure policy:
    - 429 from the token endpoint: wait 30-60s and retry the same call.
    - Refresh token rejected by the provider: fatal, never retried.
    - Anything else: TokenRefreshError to the caller, background retry.

Example:
    >>> tokens = TokenManager(settings)
    >>> await tokens.start()
    >>> access_token = await tokens.get_valid_token()
    >>> await tokens.close()
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from ctbridge.constants import CTraderConstants as c
from ctbridge.exceptions import RefreshTokenRevokedError, TokenRefreshError
from ctbridge.logs import mask_secret

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ctbridge.settings import BridgeSettings

log = logging.getLogger(__name__)


@dataclass
class TokenState:
    """Current token pair. Mutated only by TokenManager."""

    refresh_token: str
    access_token: str | None = None
    expires_at: float = 0.0


def _first(body: dict[str, Any], *keys: str) -> Any:
    """First non-empty value among snake_case / camelCase spellings."""
    for key in keys:
        value = body.get(key)
        if value not in (None, ""):
            return value
    return None


class TokenManager:
    """Access token source with single-flight refresh.

    Args:
        settings: BridgeSettings with credentials and refresh bounds.
        client: httpx client to use (one is created and owned when None).
        sleep: Coroutine used for the rate-limit wait.
        rng: Random source for delays and jitter.
        clock: Wall clock returning epoch seconds.

    """

    def __init__(
        self,
        settings: BridgeSettings,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._rng = rng or random.Random()  # noqa: S311
        self._clock = clock
        self._state = TokenState(
            refresh_token=settings.refresh_token.get_secret_value()
        )
        self._inflight: asyncio.Task[str] | None = None
        self._timer: asyncio.Task[None] | None = None
        self._started = False
        self._fatal: RefreshTokenRevokedError | None = None
        self._rotation_listeners: list[Callable[[str], None]] = []
        self.refresh_count = 0
        self.next_refresh_delay: float | None = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> TokenState:
        """Current token pair (read-only use)."""
        return self._state

    @property
    def fatal_error(self) -> RefreshTokenRevokedError | None:
        """Set once the provider rejected the refresh token."""
        return self._fatal

    @property
    def is_refreshing(self) -> bool:
        """True while a token endpoint call is in flight."""
        return self._inflight is not None and not self._inflight.done()

    @property
    def expires_in(self) -> float | None:
        """Seconds until the cached access token expires (None without one)."""
        if self._state.access_token is None:
            return None
        return max(0.0, self._state.expires_at - self._clock())

    def has_fresh_token(self) -> bool:
        """Cached token outlives the safety margin."""
        remaining = self.expires_in
        return remaining is not None and remaining > self._settings.token_safety_margin

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def get_valid_token(self) -> str:
        """Return a usable access token, refreshing first when needed.

        Raises:
            RefreshTokenRevokedError: Manager is in the fatal state.
            TokenRefreshError: The refresh this call waited for failed.

        """
        if self._fatal is not None:
            raise self._fatal
        if self.has_fresh_token() and self._state.access_token is not None:
            return self._state.access_token
        return await self.refresh()

    async def refresh(self) -> str:
        """Exchange the refresh token for a new access token.

        Concurrent callers share one in-flight call. Cancelling one caller
        does not cancel the call for the others.
        """
        if self._fatal is not None:
            raise self._fatal
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(
                self._refresh_once(), name="ctbridge-token-refresh"
            )
            self._inflight.add_done_callback(self._refresh_done)
        return await asyncio.shield(self._inflight)

    def schedule_refresh(self, delay: float) -> None:
        """(Re)schedule the background refresh ``delay`` seconds from now."""
        self.next_refresh_delay = delay
        if not self._started:
            return
        current = asyncio.current_task()
        if self._timer is not None and self._timer is not current:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(
            self._refresh_later(delay), name="ctbridge-token-timer"
        )
        log.debug("Next token refresh in %.0fs", delay)

    def invalidate(self) -> None:
        """Drop the cached access token; the next get_valid_token() refreshes."""
        if self._state.access_token is not None:
            log.info("Access token invalidated (%s)", mask_secret(self._state.access_token))
        self._state.access_token = None
        self._state.expires_at = 0.0

    def add_rotation_listener(self, callback: Callable[[str], None]) -> None:
        """Call ``callback(new_refresh_token)`` whenever the provider rotates it."""
        self._rotation_listeners.append(callback)

    async def start(self) -> None:
        """Enable the background refresh timer."""
        self._started = True
        if self.next_refresh_delay is not None and self._timer is None:
            self.schedule_refresh(self.next_refresh_delay)

    async def close(self) -> None:
        """Cancel timers and in-flight calls, close the owned HTTP client."""
        self._started = False
        for task in (self._timer, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError, Exception):
                    await task
        self._timer = None
        self._inflight = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def status(self) -> dict[str, Any]:
        """Snapshot for the health endpoint."""
        expires_in = self.expires_in
        return {
            "has_access_token": self._state.access_token is not None,
            "expires_in": None if expires_in is None else round(expires_in),
            "fatal_error": None if self._fatal is None else str(self._fatal),
            "refreshing": self.is_refreshing,
        }

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.token_http_timeout)
            self._owns_client = True
        return self._client

    def _refresh_done(self, task: asyncio.Task[str]) -> None:
        # consume the result so an unawaited failure is not reported as lost
        if not task.cancelled():
            task.exception()

    async def _refresh_later(self, delay: float) -> None:
        await self._sleep(delay)
        try:
            await self.refresh()
        except RefreshTokenRevokedError:
            log.error("Scheduled token refresh stopped: refresh token rejected")
        except TokenRefreshError as e:
            log.warning("Scheduled token refresh failed: %s", e)

    async def _post(self) -> httpx.Response:
        """POST the refresh grant, waiting out rate limits."""
        form = {
            "grant_type": c.OAuth.GRANT_TYPE_REFRESH,
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret.get_secret_value(),
            "refresh_token": self._state.refresh_token,
        }
        while True:
            try:
                response = await self._http().post(
                    self._settings.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                msg = f"Token endpoint unreachable: {e}"
                raise self._transient(TokenRefreshError(msg)) from e

            if response.status_code != c.OAuth.RATE_LIMITED_STATUS:
                return response

            delay = self._settings.rate_limit_delay(self._rng)
            log.warning("Token endpoint rate limited (429), retrying in %.1fs", delay)
            await self._sleep(delay)

    async def _refresh_once(self) -> str:
        log.info(
            "Refreshing access token (refresh token %s)",
            mask_secret(self._state.refresh_token),
        )
        response = await self._post()
        status_code = response.status_code

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        error_code = _first(body, "errorCode", "error")
        description = _first(body, "description", "error_description")

        if error_code in c.OAuth.INVALID_REFRESH_CODES and status_code < 500:
            self._fatal = RefreshTokenRevokedError(
                error_code=error_code,
                status_code=status_code,
                details={"description": description} if description else None,
            )
            log.error("Refresh token rejected by provider: %s", self._fatal)
            raise self._fatal

        if not response.is_success or error_code:
            msg = f"Token endpoint returned {status_code}"
            if description:
                msg = f"{msg}: {description}"
            raise self._transient(
                TokenRefreshError(msg, error_code=error_code, status_code=status_code)
            )

        access_token = _first(body, "access_token", "accessToken")
        expires_in = _first(body, "expires_in", "expiresIn")
        if not isinstance(access_token, str) or not isinstance(expires_in, int | float):
            msg = "Token endpoint response lacks access token or expiry"
            raise self._transient(TokenRefreshError(msg, status_code=status_code))

        self._state.access_token = access_token
        self._state.expires_at = self._clock() + float(expires_in)
        self.refresh_count += 1

        new_refresh = _first(body, "refresh_token", "refreshToken")
        if isinstance(new_refresh, str) and new_refresh != self._state.refresh_token:
            self._rotate(new_refresh)

        delay = self._settings.calculate_refresh_delay(float(expires_in), self._rng)
        log.info(
            "Access token %s valid for %ds, next refresh in %.0fs",
            mask_secret(access_token),
            int(expires_in),
            delay,
        )
        self.schedule_refresh(delay)
        return access_token

    def _rotate(self, new_refresh: str) -> None:
        self._state.refresh_token = new_refresh
        log.warning(
            "Refresh token rotated to %s; update CTRADER_REFRESH_TOKEN before restart",
            mask_secret(new_refresh),
        )
        for callback in self._rotation_listeners:
            try:
                callback(new_refresh)
            except Exception:
                log.exception("Refresh token rotation listener failed")

    def _transient(self, error: TokenRefreshError) -> TokenRefreshError:
        delay = self._settings.refresh_failure_delay(self._rng)
        log.warning("Token refresh failed: %s (retrying in %.0fs)", error, delay)
        self.schedule_refresh(delay)
        return error
