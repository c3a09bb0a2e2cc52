"""End-to-end tests of the HTTP surface.

The app runs its real lifespan: TokenManager over an httpx MockTransport and
Session over the in-memory gateway connector.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import httpx
import pytest
from fastapi.testclient import TestClient

from ctbridge.app import create_app
from ctbridge.constants import CTraderConstants as c
from ctbridge.session import Session
from ctbridge.tokens import TokenManager
from tests.constants import TestConstants as tc
from tests.fakes import FakeConnector, ScriptedGateway, error_reply, make_settings

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from fastapi import FastAPI


def token_ok(_request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "accessToken": tc.Tokens.ACCESS_TOKEN,
            "refreshToken": tc.Tokens.REFRESH_TOKEN,
            "expiresIn": tc.Tokens.EXPIRES_IN,
            "tokenType": "bearer",
        },
    )


def token_revoked(_request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        400, json={"errorCode": "ACCESS_DENIED", "description": "refresh token revoked"}
    )


def build_app(
    connector: FakeConnector,
    token_endpoint: Callable[[httpx.Request], httpx.Response] = token_ok,
    **overrides: Any,
) -> FastAPI:
    """Application wired to fakes at both ends."""
    settings = make_settings(**overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint))
    tokens = TokenManager(settings, client=client)
    session = Session(settings, tokens, connector=connector)
    return create_app(settings, tokens=tokens, session=session)


def wait_for_health(
    client: TestClient, predicate: Callable[[dict[str, Any]], bool]
) -> dict[str, Any]:
    """Poll GET / until its body satisfies ``predicate``."""
    deadline = time.monotonic() + tc.Timing.WAIT_TIMEOUT
    while True:
        body = client.get("/").json()
        if predicate(body):
            return body
        if time.monotonic() > deadline:
            msg = f"health never matched, last body: {body}"
            raise AssertionError(msg)
        time.sleep(tc.Timing.POLL_INTERVAL)


def wait_for_status(client: TestClient, expected: str) -> dict[str, Any]:
    """Poll GET / until the overall status matches."""
    return wait_for_health(client, lambda body: body["status"] == expected)


def market_order(**fields: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "symbolId": tc.Order.SYMBOL_ID,
        "side": "BUY",
        "volume": tc.Order.VOLUME,
        "type": "MARKET",
    }
    body.update(fields)
    return body


@pytest.fixture
def fake_gateway() -> ScriptedGateway:
    """Return the scripted gateway behind the connector."""
    return ScriptedGateway()


@pytest.fixture
def fake_connector(fake_gateway: ScriptedGateway) -> FakeConnector:
    """Return a connector whose sockets answer from fake_gateway."""
    return FakeConnector(fake_gateway)


@pytest.fixture
def client(fake_connector: FakeConnector) -> Iterator[TestClient]:
    """Running app with a Ready session."""
    with TestClient(build_app(fake_connector)) as test_client:
        wait_for_status(test_client, "ready")
        yield test_client


class TestSubmitOrder:
    """Test POST /order."""

    def test_market_order_accepted(
        self, client: TestClient, fake_connector: FakeConnector
    ) -> None:
        """An accepted MARKET order returns 200 with the order id."""
        response = client.post("/order", json=market_order())

        assert response.status_code == 200
        assert response.json() == {
            "orderId": tc.Order.ORDER_ID,
            "status": "ORDER_ACCEPTED",
            "positionId": tc.Order.POSITION_ID,
        }
        (sent,) = fake_connector.last.sent_of(c.PayloadType.NEW_ORDER_REQ)
        assert sent["payload"]["orderType"] == 1
        assert sent["payload"]["volume"] == tc.Order.VOLUME
        assert sent["payload"]["ctidTraderAccountId"] == tc.Credentials.ACCOUNT_ID
        assert sent["clientMsgId"]

    def test_symbol_name(self, client: TestClient, fake_connector: FakeConnector) -> None:
        """Symbol names resolve through the configured table."""
        body = market_order(symbol="eurusd")
        del body["symbolId"]

        response = client.post("/order", json=body)

        assert response.status_code == 200
        (sent,) = fake_connector.last.sent_of(c.PayloadType.NEW_ORDER_REQ)
        assert sent["payload"]["symbolId"] == tc.Order.SYMBOL_ID

    def test_order_error_event(
        self, client: TestClient, fake_gateway: ScriptedGateway
    ) -> None:
        """A gateway rejection is a 400 carrying description and code."""
        fake_gateway.replies[c.PayloadType.NEW_ORDER_REQ] = lambda _f: error_reply(
            tc.Errors.NOT_ENOUGH_MONEY, "Not enough money", c.PayloadType.ORDER_ERROR_EVENT
        )

        response = client.post("/order", json=market_order())

        assert response.status_code == 400
        assert response.json() == {
            "error": "Not enough money",
            "code": tc.Errors.NOT_ENOUGH_MONEY,
        }

    def test_sequential_orders_share_session(
        self, client: TestClient, fake_connector: FakeConnector
    ) -> None:
        """Orders reuse the one authenticated socket."""
        for _ in range(3):
            assert client.post("/order", json=market_order()).status_code == 200

        assert len(fake_connector.sockets) == 1
        sent = fake_connector.last.sent_of(c.PayloadType.NEW_ORDER_REQ)
        assert len({frame["clientMsgId"] for frame in sent}) == 3


class TestInvalidOrders:
    """Test request validation."""

    @pytest.mark.parametrize(
        ("body", "fragment"),
        [
            ({"symbolId": 1, "volume": 1000, "type": "MARKET"}, "side"),
            ({"symbolId": 1, "side": "BUY", "type": "MARKET"}, "volume"),
            ({"symbolId": 1, "side": "HOLD", "volume": 1000, "type": "MARKET"}, "side"),
            ({"symbolId": 1, "side": "BUY", "volume": 1000}, "LIMIT"),
            ({"side": "BUY", "volume": 1000, "type": "MARKET"}, "symbolId or symbol"),
        ],
    )
    def test_invalid_body(
        self,
        client: TestClient,
        fake_connector: FakeConnector,
        body: dict[str, Any],
        fragment: str,
    ) -> None:
        """Invalid bodies are 400 and never reach the gateway."""
        response = client.post("/order", json=body)

        assert response.status_code == 400
        assert fragment in response.json()["error"]
        assert fake_connector.last.sent_of(c.PayloadType.NEW_ORDER_REQ) == []

    def test_malformed_json(self, client: TestClient) -> None:
        """A body that is not JSON is a 400."""
        response = client.post(
            "/order",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert "error" in response.json()

    def test_unknown_symbol(self, client: TestClient, fake_connector: FakeConnector) -> None:
        """An unconfigured symbol name is a 400."""
        body = market_order(symbol="NOPE")
        del body["symbolId"]

        response = client.post("/order", json=body)

        assert response.status_code == 400
        assert "NOPE" in response.json()["error"]
        assert fake_connector.last.sent_of(c.PayloadType.NEW_ORDER_REQ) == []


class TestUnavailableGateway:
    """Test orders while the gateway is unreachable or silent."""

    def test_disconnected_is_503(self) -> None:
        """No Ready session means 503 and nothing sent."""
        connector = FakeConnector(fail_times=1_000)

        with TestClient(build_app(connector)) as test_client:
            response = test_client.post("/order", json=market_order())

        assert response.status_code == 503
        assert "error" in response.json()
        assert connector.sockets == []

    def test_no_reply_is_504(self, fake_gateway: ScriptedGateway) -> None:
        """A silent gateway is a 504 with an unknown outcome."""
        fake_gateway.replies[c.PayloadType.NEW_ORDER_REQ] = lambda _f: None
        connector = FakeConnector(fake_gateway)
        app = build_app(connector, order_timeout=tc.Timing.SHORT_TIMEOUT)

        with TestClient(app) as test_client:
            wait_for_status(test_client, "ready")
            response = test_client.post("/order", json=market_order())

        assert response.status_code == 504
        assert response.json()["outcome"] == "unknown"
        assert len(connector.last.sent_of(c.PayloadType.NEW_ORDER_REQ)) == 1

    def test_revoked_refresh_token(self) -> None:
        """A rejected refresh token fails the bridge for good."""
        connector = FakeConnector()

        with TestClient(build_app(connector, token_revoked)) as test_client:
            body = wait_for_health(
                test_client, lambda b: b["session"]["phase"] == "failed"
            )
            response = test_client.post("/order", json=market_order())

        assert body["token"]["fatalError"]
        assert body["session"]["phase"] == "failed"
        assert response.status_code == 503


class TestHealth:
    """Test GET /."""

    def test_ready_body(self, client: TestClient) -> None:
        """The body carries session and token readiness."""
        body = client.get("/").json()

        assert body["status"] == "ready"
        assert isinstance(body["version"], str)
        assert body["uptimeSeconds"] >= 0
        assert body["session"] == {
            "state": "ready",
            "phase": "ready",
            "generation": 1,
            "reconnectAttempt": 0,
            "lastError": None,
        }
        assert body["token"]["hasAccessToken"] is True
        assert body["token"]["expiresInSeconds"] > 0
        assert body["token"]["fatalError"] is None

    def test_degraded_while_reconnecting(self) -> None:
        """Liveness stays 200 while the session is down."""
        connector = FakeConnector(fail_times=1_000)

        with TestClient(build_app(connector)) as test_client:
            response = test_client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
