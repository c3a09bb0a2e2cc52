"""cTrader Order Bridge.

Bridges HTTP order requests onto one authenticated cTrader Open API
WebSocket session.

Main components:
- TokenManager: OAuth access/refresh token lifecycle
- Session: gateway socket state machine with reconnect and heartbeats
- OrderGateway: order submission and reply mapping
- create_app: FastAPI application wiring the above
- BridgeSettings: configuration with CTRADER_ environment variables
"""

from importlib.metadata import version

__version__ = version("ctbridge")


from ctbridge.app import create_app
from ctbridge.gateway import OrderGateway
from ctbridge.models import BridgeModels
from ctbridge.session import Session
from ctbridge.settings import BridgeSettings
from ctbridge.tokens import TokenManager

__all__ = [
    "BridgeModels",
    "BridgeSettings",
    "OrderGateway",
    "Session",
    "TokenManager",
    "__version__",
    "create_app",
]
