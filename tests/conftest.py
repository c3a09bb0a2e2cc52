"""Test configuration and fixtures.

Nothing here touches the network: the token endpoint is an httpx
MockTransport, the gateway socket is an in-memory FakeSocket driven by a
ScriptedGateway, and reconnect delays go through a RecordingSleep.

Settings are built with ``_env_file=None`` so a developer's .env never leaks
into the suite.
"""

from __future__ import annotations

import pytest

from ctbridge.settings import BridgeSettings
from tests.fakes import (
    FakeConnector,
    FakeTokenProvider,
    RecordingSleep,
    ScriptedGateway,
    make_settings,
)


@pytest.fixture
def settings() -> BridgeSettings:
    """Return test settings."""
    return make_settings()


@pytest.fixture
def gateway() -> ScriptedGateway:
    """Return a gateway answering auth and orders successfully."""
    return ScriptedGateway()


@pytest.fixture
def connector(gateway: ScriptedGateway) -> FakeConnector:
    """Return a connector using the scripted gateway."""
    return FakeConnector(gateway)


@pytest.fixture
def tokens() -> FakeTokenProvider:
    """Return a token provider with a fixed token."""
    return FakeTokenProvider()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Return a sleep that records delays."""
    return RecordingSleep()
