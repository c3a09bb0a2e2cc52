"""Bridge configuration using Pydantic Settings.

Automatic environment variable loading with CTRADER_ prefix.
Single source of truth for all configuration across the project.

Hierarchy Level: 1
- Imports: CTraderConstants (Level 0)
- Used by: tokens.py, session.py, gateway.py, app.py, __main__.py

Configuration Sources (precedence high to low):
1. Environment variables (CTRADER_*, plus PORT for the listener)
2. .env file
3. Defaults defined here

Usage:
    >>> from ctbridge.settings import BridgeSettings
    >>> settings = BridgeSettings()  # loads from env
    >>> settings.ws_endpoint
    'wss://demo.ctraderapi.com:5036'
    >>> delay = settings.calculate_reconnect_delay(attempt=2)
"""

import random

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from ctbridge.constants import CTraderConstants as c


class BridgeSettings(BaseSettings):
    """cTrader bridge configuration with automatic env loading.

    All fields auto-load from environment variables with CTRADER_ prefix.
    The listen port additionally honours a bare PORT variable, which is what
    container platforms inject.

    Usage:
        settings = BridgeSettings()  # loads from env
        settings = BridgeSettings(env="live")  # override
    """

    model_config = SettingsConfigDict(
        env_prefix="CTRADER_",
        frozen=True,
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    # =========================================================================
    # CREDENTIALS
    # =========================================================================
    client_id: str = ""
    client_secret: SecretStr = SecretStr("")
    refresh_token: SecretStr = SecretStr("")
    account_id: int = 0

    # =========================================================================
    # ENDPOINTS
    # =========================================================================
    env: c.Environment = c.Environment.DEMO
    ws_url: str | None = None
    """Explicit WebSocket endpoint; overrides the env selector when set."""

    token_url: str = c.Network.TOKEN_URL

    # =========================================================================
    # HTTP LISTENER
    # =========================================================================
    http_host: str = c.Network.BIND_ALL
    port: int = Field(
        default=c.Network.HTTP_PORT,
        validation_alias=AliasChoices("CTRADER_PORT", "PORT", "port"),
    )

    # =========================================================================
    # TIMEOUTS (in seconds)
    # =========================================================================
    request_timeout: float = c.Timing.REQUEST_TIMEOUT
    order_timeout: float = c.Timing.ORDER_TIMEOUT
    token_http_timeout: float = c.Timing.TOKEN_HTTP_TIMEOUT
    ws_open_timeout: float = c.Network.WS_OPEN_TIMEOUT

    # =========================================================================
    # HEARTBEAT
    # =========================================================================
    heartbeat_interval: float = c.Timing.HEARTBEAT_INTERVAL
    heartbeat_echo: bool = False
    """Answer every server heartbeat with one of ours."""

    # =========================================================================
    # RECONNECT
    # =========================================================================
    reconnect_initial_delay: float = c.Timing.RECONNECT_INITIAL_DELAY
    reconnect_max_delay: float = c.Timing.RECONNECT_MAX_DELAY
    reconnect_multiplier: float = c.Timing.RECONNECT_MULTIPLIER
    reconnect_jitter: float = c.Timing.RECONNECT_JITTER
    reconnect_max_attempts: int | None = None
    """Give up after this many consecutive failed incarnations (None = never)."""

    # =========================================================================
    # TOKEN REFRESH
    # =========================================================================
    token_safety_margin: float = c.Timing.TOKEN_SAFETY_MARGIN
    token_min_refresh_delay: float = c.Timing.TOKEN_MIN_REFRESH_DELAY
    token_max_refresh_delay: float = c.Timing.TOKEN_MAX_REFRESH_DELAY
    token_refresh_jitter: float = c.Timing.TOKEN_REFRESH_JITTER

    # =========================================================================
    # PROTOCOL DATA
    # =========================================================================
    symbols: dict[str, int] = Field(
        default_factory=lambda: dict(c.Symbols.DEFAULT_TABLE)
    )
    token_error_codes: frozenset[str] = c.AuthError.TOKEN_ERROR_CODES
    app_auth_includes_token: bool = True
    """Send the current accessToken with the application auth as well."""

    # =========================================================================
    # LOGGING
    # =========================================================================
    log_level: str = c.Logging.LEVEL
    log_json: bool = False

    # =========================================================================
    # DERIVED VALUES
    # =========================================================================

    @property
    def ws_endpoint(self) -> str:
        """WebSocket endpoint for the selected environment."""
        if self.ws_url:
            return self.ws_url
        if self.env == c.Environment.LIVE:
            return c.Network.LIVE_WS_URL
        return c.Network.DEMO_WS_URL

    def missing_credentials(self) -> list[str]:
        """Names of credential fields that are still empty."""
        missing = []
        if not self.client_id:
            missing.append("CTRADER_CLIENT_ID")
        if not self.client_secret.get_secret_value():
            missing.append("CTRADER_CLIENT_SECRET")
        if not self.refresh_token.get_secret_value():
            missing.append("CTRADER_REFRESH_TOKEN")
        if not self.account_id:
            missing.append("CTRADER_ACCOUNT_ID")
        return missing

    # =========================================================================
    # CALCULATION METHODS
    # =========================================================================

    def calculate_reconnect_delay(
        self, attempt: int, rng: random.Random | None = None
    ) -> float:
        """Calculate reconnect backoff delay with jitter.

        Args:
            attempt: Consecutive failed incarnations so far (0-indexed).
            rng: Random source (module random when None).

        Returns:
            Delay in seconds, never above reconnect_max_delay.

        """
        rnd = rng or random
        delay = self.reconnect_initial_delay * (self.reconnect_multiplier**attempt)
        delay = min(delay, self.reconnect_max_delay)
        # random is fine for jitter - not cryptographic
        jitter = delay * self.reconnect_jitter * (2 * rnd.random() - 1)  # noqa: S311
        return max(0.0, min(delay + jitter, self.reconnect_max_delay))

    def calculate_refresh_delay(
        self, expires_in: float, rng: random.Random | None = None
    ) -> float:
        """Calculate the delay until the next automatic token refresh.

        The result is always inside [token_min_refresh_delay,
        token_max_refresh_delay], whatever the provider reported.

        Args:
            expires_in: Lifetime of the new access token in seconds.
            rng: Random source (module random when None).

        Returns:
            Delay in seconds.

        """
        rnd = rng or random
        delay = expires_in - self.token_safety_margin
        delay -= rnd.uniform(0, self.token_refresh_jitter)
        return min(max(delay, self.token_min_refresh_delay), self.token_max_refresh_delay)

    def rate_limit_delay(self, rng: random.Random | None = None) -> float:
        """Delay before retrying a rate-limited (429) token refresh."""
        rnd = rng or random
        return rnd.uniform(c.Timing.RATE_LIMIT_MIN_DELAY, c.Timing.RATE_LIMIT_MAX_DELAY)

    def refresh_failure_delay(self, rng: random.Random | None = None) -> float:
        """Delay before retrying a failed token refresh in the background."""
        rnd = rng or random
        return rnd.uniform(
            c.Timing.REFRESH_FAILURE_MIN_DELAY,
            c.Timing.REFRESH_FAILURE_MAX_DELAY,
        )
