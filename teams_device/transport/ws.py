"""WebSocket helpers for the Teams local device API."""

from __future__ import annotations

import asyncio

import aiohttp
import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    TeamsConnectionError,
    TeamsHandshakeError,
    TeamsTimeout,
)

WsConnection = ClientConnection | aiohttp.ClientWebSocketResponse


async def connect_websocket(
    uri: str,
    *,
    session: aiohttp.ClientSession | None = None,
    ping_interval: int | None = 20,
    close_timeout: float = 2.0,
    timeout: float = 5.0,
) -> WsConnection:
    """Connect to the meeting application's WebSocket endpoint.

    Uses the websockets library unless an aiohttp session is supplied, in
    which case the socket is opened on that session.

    Args:
        uri: Full ws:// URI including query parameters
        session: Optional aiohttp session owned by the caller
        ping_interval: Interval for ping frames
        close_timeout: Seconds allowed for the closing handshake
        timeout: Connection timeout
    """
    if session is not None:
        return await _connect_aiohttp(
            session, uri, ping_interval=ping_interval, timeout=timeout
        )
    try:
        return await asyncio.wait_for(
            websockets.connect(
                uri,
                ping_interval=ping_interval,
                close_timeout=close_timeout,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TeamsTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise TeamsHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise TeamsConnectionError("WebSocket connection failed") from err


async def _connect_aiohttp(
    session: aiohttp.ClientSession,
    uri: str,
    *,
    ping_interval: int | None,
    timeout: float,
) -> aiohttp.ClientWebSocketResponse:
    try:
        return await asyncio.wait_for(
            session.ws_connect(uri, heartbeat=ping_interval),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TeamsTimeout("WebSocket connection timed out") from err
    except aiohttp.WSServerHandshakeError as err:
        raise TeamsHandshakeError("WebSocket handshake failed") from err
    except (OSError, aiohttp.ClientError) as err:
        raise TeamsConnectionError("WebSocket connection failed") from err
