"""WebSocket client wrapper for the Teams local device API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import aiohttp
from aiohttp import WSMsgType
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import TeamsClientError, TeamsConnectionError, TeamsMessageError
from .ws import WsConnection, connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class TeamsWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class TeamsWsMessage:
    """Normalized WebSocket message payload."""

    type: TeamsWsMessageType
    data: str | None = None


class TeamsWsClient:
    """Wrapper around a websockets or aiohttp connection."""

    def __init__(self) -> None:
        self._ws: WsConnection | None = None

    async def connect(
        self,
        uri: str,
        *,
        session: aiohttp.ClientSession | None = None,
        ping_interval: int | None = 20,
        close_timeout: float = 2.0,
        timeout: float = 5.0,
    ) -> None:
        """Connect to the meeting application's websocket."""
        self._ws = await connect_websocket(
            uri,
            session=session,
            ping_interval=ping_interval,
            close_timeout=close_timeout,
            timeout=timeout,
        )

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def close(self) -> None:
        """Close the websocket connection.

        Raises:
            TeamsConnectionError: If the closing handshake failed
        """
        if self._ws is None:
            return
        try:
            await self._ws.close()
        except (WebSocketException, OSError, aiohttp.ClientError) as err:
            raise TeamsConnectionError(f"WebSocket close failed: {err}") from err

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Serialize and send a JSON payload.

        Raises:
            TeamsMessageError: If the payload is not JSON serializable
            TeamsConnectionError: If not connected or the send failed
        """
        if self._ws is None:
            raise TeamsConnectionError("WebSocket is not connected")
        try:
            text = json.dumps(payload, separators=(",", ":"))
        except (TypeError, ValueError) as err:
            raise TeamsMessageError("Payload is not JSON serializable") from err
        try:
            if isinstance(self._ws, aiohttp.ClientWebSocketResponse):
                await self._ws.send_str(text)
            else:
                await self._ws.send(text)
        except (WebSocketException, OSError, aiohttp.ClientError) as err:
            raise TeamsConnectionError("WebSocket send failed") from err

    def __aiter__(self) -> AsyncIterator[TeamsWsMessage]:
        if self._ws is None:
            raise TeamsConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[TeamsWsMessage]:
        if self._ws is None:
            raise TeamsConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
                if normalized.type is not TeamsWsMessageType.TEXT:
                    return
        except ConnectionClosed:
            yield TeamsWsMessage(type=TeamsWsMessageType.CLOSED)
        except Exception:
            yield TeamsWsMessage(type=TeamsWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield TeamsWsMessage(type=TeamsWsMessageType.CLOSED)

    @staticmethod
    def _normalize_message(msg: Any) -> TeamsWsMessage | None:
        """Normalize backend-specific frames into TeamsWsMessage."""
        if isinstance(msg, bytes):
            return None
        if isinstance(msg, str):
            return TeamsWsMessage(TeamsWsMessageType.TEXT, msg)

        if isinstance(msg, aiohttp.WSMessage):
            normalized_type = TeamsWsClient._map_aiohttp_type(msg.type)
            if normalized_type is None:
                return None
            data = msg.data if normalized_type is TeamsWsMessageType.TEXT else None
            return TeamsWsMessage(normalized_type, data)

        return None

    @staticmethod
    def _map_aiohttp_type(msg_type: WSMsgType) -> TeamsWsMessageType | None:
        """Map aiohttp WSMsgType enums to internal message types."""
        if msg_type is WSMsgType.TEXT:
            return TeamsWsMessageType.TEXT

        if msg_type in {WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED}:
            return TeamsWsMessageType.CLOSED

        if msg_type is WSMsgType.ERROR:
            return TeamsWsMessageType.ERROR

        return None

    @staticmethod
    def decode_json(message: TeamsWsMessage) -> Any:
        """Decode a TEXT message payload into JSON."""
        if message.type is not TeamsWsMessageType.TEXT:
            raise TeamsClientError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise TeamsMessageError("Message data is not a string")
        try:
            return json.loads(message.data)
        except ValueError as err:
            raise TeamsMessageError("Message is not valid JSON") from err
