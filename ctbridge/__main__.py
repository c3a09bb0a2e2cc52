"""Entry point for ctbridge.

Usage:
    # Run the bridge with settings from CTRADER_* variables / .env
    python -m ctbridge

    # Override listener and environment
    python -m ctbridge --host 127.0.0.1 --port 9000 --env live --debug
    python -m ctbridge --json-logs

Configuration:
    CTRADER_CLIENT_ID       - Open API application client id
    CTRADER_CLIENT_SECRET   - Open API application secret
    CTRADER_REFRESH_TOKEN   - OAuth refresh token
    CTRADER_ACCOUNT_ID      - ctidTraderAccountId to trade on
    CTRADER_ENV             - demo (default) or live
    PORT                    - HTTP listen port (default: 8080)
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any

import uvicorn
from pydantic import ValidationError

from ctbridge import __version__
from ctbridge.app import create_app
from ctbridge.constants import CTraderConstants as c
from ctbridge.logs import configure_logging
from ctbridge.settings import BridgeSettings

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ctbridge",
        description="HTTP to cTrader Open API order bridge",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind (default: CTRADER_HTTP_HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=None,
        help="Port (default: PORT or 8080)",
    )
    parser.add_argument(
        "--env",
        choices=[e.value for e in c.Environment],
        default=None,
        help="Gateway environment (default: CTRADER_ENV or demo)",
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the bridge.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 for success, 1 for configuration error, 2 for crash).

    """
    args = _build_parser().parse_args(argv)

    try:
        settings = BridgeSettings()
    except ValidationError as e:
        configure_logging()
        log.error("Invalid configuration: %s", e)
        return 1

    overrides: dict[str, Any] = {}
    if args.host is not None:
        overrides["http_host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.env is not None:
        overrides["env"] = c.Environment(args.env)
    if args.debug:
        overrides["log_level"] = "DEBUG"
    if args.json_logs:
        overrides["log_json"] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level, json=settings.log_json)
    log.debug("Debug logging enabled")

    missing = settings.missing_credentials()
    if missing:
        log.error("Missing required configuration: %s", ", ".join(missing))
        return 1

    log.info(
        "ctbridge %s listening on %s:%d (%s)",
        __version__,
        settings.http_host,
        settings.port,
        settings.ws_endpoint,
    )
    try:
        uvicorn.run(
            create_app(settings),
            host=settings.http_host,
            port=settings.port,
            log_config=None,
        )
    except KeyboardInterrupt:
        log.info("Bridge interrupted by user")
    except Exception:
        log.exception("Bridge error")
        return 2
    finally:
        log.info("Bridge stopped")

    return 0


if __name__ == "__main__":
    sys.exit(main())
