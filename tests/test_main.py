"""Tests for the ctbridge command line entry point."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import pytest
import structlog
import uvicorn

from ctbridge.__main__ import main
from tests.constants import TestConstants as tc

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture
def clean_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[pytest.MonkeyPatch]:
    """Empty CTRADER_* environment, no .env file, logging restored afterwards."""
    for name in list(os.environ):
        if name.startswith("CTRADER_") or name == "PORT":
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield monkeypatch
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def uvicorn_calls(clean_env: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Replace uvicorn.run with a recorder."""
    calls: list[dict[str, Any]] = []

    def fake_run(app: Any, **kwargs: Any) -> None:
        calls.append({"app": app, **kwargs})

    clean_env.setattr(uvicorn, "run", fake_run)
    return calls


def set_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CTRADER_CLIENT_ID", tc.Credentials.CLIENT_ID)
    monkeypatch.setenv("CTRADER_CLIENT_SECRET", tc.Credentials.CLIENT_SECRET)
    monkeypatch.setenv("CTRADER_REFRESH_TOKEN", tc.Tokens.REFRESH_TOKEN)
    monkeypatch.setenv("CTRADER_ACCOUNT_ID", str(tc.Credentials.ACCOUNT_ID))


class TestMain:
    """Test main()."""

    def test_missing_credentials(self, uvicorn_calls: list[dict[str, Any]]) -> None:
        """Without credentials the bridge refuses to start."""
        assert main([]) == 1
        assert uvicorn_calls == []

    def test_invalid_configuration(
        self, clean_env: pytest.MonkeyPatch, uvicorn_calls: list[dict[str, Any]]
    ) -> None:
        """Unparseable settings exit with 1."""
        set_credentials(clean_env)
        clean_env.setenv("CTRADER_ACCOUNT_ID", "not-a-number")

        assert main([]) == 1
        assert uvicorn_calls == []

    def test_runs_with_overrides(
        self, clean_env: pytest.MonkeyPatch, uvicorn_calls: list[dict[str, Any]]
    ) -> None:
        """Command line options override the environment."""
        set_credentials(clean_env)

        assert main(["--host", "127.0.0.1", "-p", "9001", "--env", "live"]) == 0

        (call,) = uvicorn_calls
        assert call["host"] == "127.0.0.1"
        assert call["port"] == 9001
        settings = call["app"].state.settings
        assert settings.ws_endpoint == "wss://live.ctraderapi.com:5036"

    def test_server_crash(
        self, clean_env: pytest.MonkeyPatch, uvicorn_calls: list[dict[str, Any]]
    ) -> None:
        """An exception from the server exits with 2."""
        set_credentials(clean_env)

        def crash(_app: Any, **_kwargs: Any) -> None:
            msg = "address in use"
            raise OSError(msg)

        clean_env.setattr(uvicorn, "run", crash)

        assert main([]) == 2
