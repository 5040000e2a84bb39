"""Auto-reconnecting client for the Teams third-party device API.

This module provides the public API. It handles:
- Background connection supervision and reconnects
- Routing of token refreshes, acknowledgements and meeting updates
- The last known meeting snapshot and its accessors
- One coroutine per wire action
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from enum import Enum

import aiohttp

from .channels import DuplexChannels
from .config import DEFAULT_PORT, ClientConfig
from .errors import TeamsClientError
from .protocol import (
    MeetingUpdate,
    TeamsAction,
    TeamsActionModifier,
    build_command,
    build_endpoint_uri,
)
from .router import EventCallback, route
from .state import CorrelationCounter, Guarded, MeetingSnapshot
from .supervisor import supervise

_LOGGER = logging.getLogger(__name__)

ErrorCallback = Callable[[TeamsClientError], None]


class DisconnectResult(Enum):
    """Outcome of TeamsClient.disconnect()."""

    DISCONNECTED = "disconnected"
    ALREADY_DISCONNECTED = "already_disconnected"
    NOT_RUNNING = "not_running"


class TeamsClient:
    """Persistent client for the meeting application's local WebSocket API.

    Usage:
        client = TeamsClient("Acme", "Desk Panel", "Panel", "1.0.0", token=saved)
        client.set_event_callback(on_update)
        await client.connect()
        await client.toggle_mute()
        ...
        await client.disconnect()
        save(client.token)

    Pass an empty token on first use. The meeting application asks the
    user to approve the device and then pushes a token, which is kept in
    ``token`` and should be persisted before exiting.

    State accessors are safe to call from any thread. Commands are
    coroutines and must run on the client's event loop.
    """

    def __init__(
        self,
        manufacturer: str,
        device: str,
        app: str,
        app_version: str,
        token: str = "",
        port: int = 0,
        *,
        config: ClientConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize client. Does not connect.

        Args:
            manufacturer: Manufacturer name sent to the meeting application
            device: Device name
            app: App name
            app_version: App version
            token: Pairing token, empty when not paired yet
            port: Local API port, 0 for the default 8124
            config: Connection and queueing settings
            session: Optional aiohttp session to open sockets on
        """
        if port == 0:
            port = DEFAULT_PORT
        if not 0 < port < 65536:
            raise ValueError(f"Invalid port: {port}")

        self._manufacturer = manufacturer
        self._device = device
        self._app = app
        self._app_version = app_version
        self.port = port
        self.label = device
        self.config = config or ClientConfig()
        self.session = session
        self.channels = DuplexChannels.from_config(self.config)

        self._token = Guarded(token)
        self._alive = Guarded(False)
        self._snapshot = Guarded(MeetingSnapshot())
        self._counter = CorrelationCounter()
        self._auto_reconnect = True
        self._disconnect_event = asyncio.Event()

        self._event_callback: EventCallback | None = None
        self._error_callback: ErrorCallback | None = None

        self._supervisor_task: asyncio.Task[None] | None = None
        self._router_task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    def manufacturer(self) -> str:
        return self._manufacturer

    @property
    def device(self) -> str:
        return self._device

    @property
    def app(self) -> str:
        return self._app

    @property
    def app_version(self) -> str:
        return self._app_version

    def endpoint_uri(self) -> str:
        """Build the endpoint URI with the current token."""
        return build_endpoint_uri(
            self.config.host,
            self.port,
            manufacturer=self._manufacturer,
            device=self._device,
            app=self._app,
            app_version=self._app_version,
            token=self.token,
        )

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start connecting in the background and return immediately.

        The connection is re-established after drops until disconnect()
        is called.
        """
        if self.running:
            _LOGGER.debug("[%s] Already running", self.label)
            return

        self._auto_reconnect = True
        self._disconnect_event = asyncio.Event()
        self._router_task = asyncio.create_task(
            self._route_loop(), name=f"teams-router-{self.label}"
        )
        self._supervisor_task = asyncio.create_task(
            supervise(self), name=f"teams-supervisor-{self.label}"
        )
        _LOGGER.info("[%s] Client started", self.label)

    async def disconnect(self) -> DisconnectResult:
        """Stop reconnecting and tear down any active connection."""
        self._auto_reconnect = False
        task = self._supervisor_task
        self._supervisor_task = None

        if task is None or task.done():
            await self._stop_router()
            _LOGGER.debug("[%s] Disconnect requested while not running", self.label)
            return DisconnectResult.NOT_RUNNING

        was_connected = self.is_connected
        self._disconnect_event.set()

        grace = self.config.connect_timeout + self.config.close_timeout
        done, _ = await asyncio.wait({task}, timeout=grace)
        if not done:
            _LOGGER.warning("[%s] Supervisor did not stop in time, cancelling", self.label)
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        elif not task.cancelled() and task.exception() is not None:
            _LOGGER.error(
                "[%s] Supervisor failed: %s", self.label, task.exception()
            )

        await self._stop_router()
        _LOGGER.info("[%s] Client stopped", self.label)
        if was_connected:
            return DisconnectResult.DISCONNECTED
        return DisconnectResult.ALREADY_DISCONNECTED

    @property
    def running(self) -> bool:
        """True while the supervisor is running."""
        return self._supervisor_task is not None and not self._supervisor_task.done()

    @property
    def is_connected(self) -> bool:
        """True while a socket is open."""
        return self._alive.get()

    @property
    def auto_reconnect(self) -> bool:
        return self._auto_reconnect

    @property
    def disconnect_event(self) -> asyncio.Event:
        return self._disconnect_event

    def set_alive(self, alive: bool) -> None:
        if self._alive.set(alive) != alive:
            _LOGGER.debug("[%s] Connected: %s", self.label, alive)

    # -------------------------------------------------------------------------
    # Public API: Token
    # -------------------------------------------------------------------------

    @property
    def token(self) -> str:
        return self._token.get()

    @token.setter
    def token(self, token: str) -> None:
        self._token.set(token)

    def set_token(self, token: str) -> None:
        self._token.set(token)

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def set_event_callback(self, callback: EventCallback | None) -> None:
        """Register callback for meeting updates.

        The callback may be a plain function or a coroutine function. It
        runs on the routing task, so a slow callback delays every message
        behind it.
        """
        self._event_callback = callback

    def set_error_callback(self, callback: ErrorCallback | None) -> None:
        """Register callback for connection, decode, send and rejection errors.

        Without a callback these errors are only logged.
        """
        self._error_callback = callback

    @property
    def event_callback(self) -> EventCallback | None:
        return self._event_callback

    def report_error(self, err: TeamsClientError) -> None:
        if self._error_callback is None:
            return
        try:
            self._error_callback(err)
        except Exception as cb_err:
            _LOGGER.exception("[%s] Error callback error: %s", self.label, cb_err)

    # -------------------------------------------------------------------------
    # Public API: Meeting State
    # -------------------------------------------------------------------------

    @property
    def snapshot(self) -> MeetingSnapshot:
        """Last known meeting state; may be stale until refresh() is answered."""
        return self._snapshot.get()

    def store_update(self, update: MeetingUpdate) -> None:
        self._snapshot.set(MeetingSnapshot.capture(update))

    @property
    def is_muted(self) -> bool:
        return self._snapshot.get().update.state.is_muted

    @property
    def is_video_on(self) -> bool:
        return self._snapshot.get().update.state.is_video_on

    @property
    def is_hand_raised(self) -> bool:
        return self._snapshot.get().update.state.is_hand_raised

    @property
    def is_in_meeting(self) -> bool:
        return self._snapshot.get().update.state.is_in_meeting

    @property
    def is_recording_on(self) -> bool:
        return self._snapshot.get().update.state.is_recording_on

    @property
    def is_background_blurred(self) -> bool:
        return self._snapshot.get().update.state.is_background_blurred

    @property
    def is_sharing(self) -> bool:
        return self._snapshot.get().update.state.is_sharing

    @property
    def has_unread_messages(self) -> bool:
        return self._snapshot.get().update.state.has_unread_messages

    @property
    def can_toggle_mute(self) -> bool:
        return self._snapshot.get().update.permissions.can_toggle_mute

    @property
    def can_toggle_video(self) -> bool:
        return self._snapshot.get().update.permissions.can_toggle_video

    @property
    def can_raise_hand(self) -> bool:
        return self._snapshot.get().update.permissions.can_toggle_hand

    @property
    def can_toggle_blur(self) -> bool:
        return self._snapshot.get().update.permissions.can_toggle_blur

    @property
    def can_leave(self) -> bool:
        return self._snapshot.get().update.permissions.can_leave

    @property
    def can_react(self) -> bool:
        return self._snapshot.get().update.permissions.can_react

    @property
    def can_toggle_share_tray(self) -> bool:
        return self._snapshot.get().update.permissions.can_toggle_share_tray

    @property
    def can_toggle_chat(self) -> bool:
        return self._snapshot.get().update.permissions.can_toggle_chat

    @property
    def can_stop_sharing(self) -> bool:
        return self._snapshot.get().update.permissions.can_stop_sharing

    @property
    def can_pair(self) -> bool:
        return self._snapshot.get().update.permissions.can_pair

    # -------------------------------------------------------------------------
    # Public API: Commands
    # -------------------------------------------------------------------------

    async def send(
        self,
        action: TeamsAction | str,
        modifier: TeamsActionModifier | str | None = None,
    ) -> int:
        """Queue a command and return its request id.

        Raises:
            TeamsQueueFullError: If the outbound queue has no room under
                the configured overflow policy
        """
        command = build_command(action, self._counter.next(), modifier)
        await self.channels.outbound.put(command)
        _LOGGER.debug(
            "[%s] Queued command %d (%s)", self.label, command.request_id, command.action
        )
        return command.request_id

    async def refresh(self) -> int:
        """Ask for the current meeting state; the answer reaches the event callback."""
        return await self.send(TeamsAction.QUERY_STATE)

    async def toggle_mute(self) -> int:
        return await self.send(TeamsAction.TOGGLE_MUTE)

    async def toggle_video(self) -> int:
        return await self.send(TeamsAction.TOGGLE_VIDEO)

    async def toggle_background_blur(self) -> int:
        return await self.send(TeamsAction.TOGGLE_BACKGROUND_BLUR)

    async def toggle_hand_raised(self) -> int:
        return await self.send(TeamsAction.TOGGLE_HAND)

    async def toggle_share_tray(self) -> int:
        return await self.send(TeamsAction.TOGGLE_UI, TeamsActionModifier.SHARE_TRAY)

    async def toggle_chat(self) -> int:
        return await self.send(TeamsAction.TOGGLE_UI, TeamsActionModifier.CHAT)

    async def stop_sharing(self) -> int:
        return await self.send(TeamsAction.STOP_SHARING)

    async def leave(self) -> int:
        return await self.send(TeamsAction.LEAVE)

    async def react(self, reaction: TeamsActionModifier) -> int:
        return await self.send(TeamsAction.SEND_REACTION, reaction)

    async def react_love(self) -> int:
        return await self.react(TeamsActionModifier.LOVE)

    async def react_laugh(self) -> int:
        return await self.react(TeamsActionModifier.LAUGH)

    async def react_applause(self) -> int:
        return await self.react(TeamsActionModifier.APPLAUSE)

    async def react_wow(self) -> int:
        return await self.react(TeamsActionModifier.WOW)

    async def react_like(self) -> int:
        return await self.react(TeamsActionModifier.LIKE)

    # -------------------------------------------------------------------------
    # Internal: Routing
    # -------------------------------------------------------------------------

    async def _route_loop(self) -> None:
        inbound = self.channels.inbound
        try:
            while True:
                message = await inbound.get()
                await route(self, message)
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Router cancelled", self.label)
            raise

    async def _stop_router(self) -> None:
        task = self._router_task
        self._router_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
