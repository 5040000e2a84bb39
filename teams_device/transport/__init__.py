"""Transport layer for the Teams device client.

Components:
- ws: WebSocket connection establishment
- ws_client: WebSocket message iteration and sending
"""

from .ws import connect_websocket
from .ws_client import TeamsWsClient, TeamsWsMessage, TeamsWsMessageType

__all__ = [
    "TeamsWsClient",
    "TeamsWsMessage",
    "TeamsWsMessageType",
    "connect_websocket",
]
