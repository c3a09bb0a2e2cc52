"""Structural interfaces shared by the session and its collaborators.

- TokenProvider: what the session needs from the token manager
- Transport: the subset of a websockets client connection the session uses
- Connector: factory opening a Transport for a URL

Uses @runtime_checkable for both static (mypy/pyright) and runtime (isinstance)
validation, so test doubles can be checked against the same contract.

"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

@runtime_checkable
class TokenProvider(Protocol):
    """Source of fresh access tokens."""

    async def get_valid_token(self) -> str:
        """Return an access token with enough remaining lifetime."""
        ...

    def invalidate(self) -> None:
        """Forget the cached access token so the next call refreshes."""
        ...

    @property
    def fatal_error(self) -> BaseException | None:
        """Unrecoverable refresh failure, if any."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Duplex text-frame connection (websockets ClientConnection subset)."""

    async def send(self, message: str) -> None:
        """Send one text frame."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the connection."""
        ...

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        """Iterate over inbound frames until the connection closes."""
        ...


type Connector = Callable[[str], Awaitable[Transport]]
type EventListener = Callable[[Any], None]
