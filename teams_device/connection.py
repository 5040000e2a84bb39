"""One physical connection attempt, torn down as a unit.

A reader task moves decoded frames onto the inbound queue and a writer
task drains the outbound queue onto the socket. The loop ends on the
first of: SIGINT/SIGTERM, parent cancellation, or the reader finishing.
Whichever fires first, both tasks are cancelled, the socket is closed and
both are awaited before returning. A close that fails is logged and does
not skip the await.

Signal handlers are installed once per event loop and shared by every
connection on it; the last connection to finish removes them.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import aiohttp

from .channels import DuplexChannels
from .config import ClientConfig
from .errors import TeamsClientError, TeamsConnectionError, TeamsMessageError
from .protocol import parse_inbound
from .transport.ws_client import TeamsWsClient, TeamsWsMessageType

_LOGGER = logging.getLogger(__name__)

ErrorHook = Callable[[TeamsClientError], None]


class TerminationReason(Enum):
    """Why a connection loop returned."""

    SIGNAL = "signal"
    CANCELLED = "cancelled"
    PEER_CLOSED = "peer_closed"
    READ_ERROR = "read_error"


async def run_connection(
    uri: str,
    channels: DuplexChannels,
    parent_cancel: asyncio.Event,
    *,
    config: ClientConfig | None = None,
    session: aiohttp.ClientSession | None = None,
    on_open: Callable[[], None] | None = None,
    on_error: ErrorHook | None = None,
    label: str = "teams",
) -> TerminationReason:
    """Run one connection until it terminates.

    Args:
        uri: Endpoint URI including query parameters
        channels: Queues shared with the client
        parent_cancel: Set by the owner to tear the connection down
        config: Timeouts and signal handling settings
        session: Optional aiohttp session to open the socket on
        on_open: Called once the socket is open
        on_error: Receives read, decode and send failures
        label: Log prefix

    Returns:
        The first termination reason observed

    Raises:
        TeamsClientError: If the connection could not be opened
    """
    config = config or ClientConfig()
    ws_client = TeamsWsClient()
    await ws_client.connect(
        uri,
        session=session,
        ping_interval=config.ping_interval,
        close_timeout=config.close_timeout,
        timeout=config.connect_timeout,
    )
    _LOGGER.info("[%s] WebSocket connected to %s", label, uri.split("?", 1)[0])

    signal_received = asyncio.Event()
    tasks: list[asyncio.Task[Any]] = []
    try:
        if on_open is not None:
            on_open()
        if config.handle_signals:
            _install_signal_handlers(signal_received)

        reader = asyncio.create_task(_read_loop(ws_client, channels, on_error, label))
        tasks.append(reader)
        tasks.append(
            asyncio.create_task(_write_loop(ws_client, channels, on_error, label))
        )
        parent_wait = asyncio.create_task(parent_cancel.wait())
        tasks.append(parent_wait)
        signal_wait = asyncio.create_task(signal_received.wait())
        tasks.append(signal_wait)

        await asyncio.wait(
            {reader, parent_wait, signal_wait},
            return_when=asyncio.FIRST_COMPLETED,
        )
        if signal_wait.done():
            _LOGGER.info("[%s] Received OS exit signal", label)
            reason = TerminationReason.SIGNAL
        elif parent_wait.done():
            _LOGGER.info("[%s] Connection loop received parent cancellation", label)
            reason = TerminationReason.CANCELLED
        else:
            reason = reader.result()
            _LOGGER.info("[%s] Read loop signalled a disconnect (%s)", label, reason.value)
    finally:
        if config.handle_signals:
            _remove_signal_handlers(signal_received)
        for task in tasks:
            task.cancel()
        try:
            await _close(ws_client, config.close_timeout, label)
        finally:
            await asyncio.gather(*tasks, return_exceptions=True)
            _LOGGER.debug("[%s] Leaving connection loop", label)

    return reason


async def _read_loop(
    ws_client: TeamsWsClient,
    channels: DuplexChannels,
    on_error: ErrorHook | None,
    label: str,
) -> TerminationReason:
    """Forward decoded frames to the inbound queue until the socket fails."""
    message_count = 0
    try:
        async for msg in ws_client:
            if msg.type is TeamsWsMessageType.TEXT:
                message_count += 1
                try:
                    inbound = parse_inbound(TeamsWsClient.decode_json(msg))
                except TeamsMessageError as err:
                    _LOGGER.warning(
                        "[%s] Unable to decode message %r: %s", label, msg.data, err
                    )
                    _report(on_error, err)
                    continue
                await channels.inbound.put(inbound)

            elif msg.type is TeamsWsMessageType.CLOSED:
                _LOGGER.info(
                    "[%s] Exiting read loop due to closed connection (%d messages)",
                    label,
                    message_count,
                )
                _report(on_error, TeamsConnectionError("Connection closed by peer"))
                return TerminationReason.PEER_CLOSED

            else:
                _LOGGER.warning("[%s] Unable to read message, disconnecting", label)
                _report(on_error, TeamsConnectionError("WebSocket read failed"))
                return TerminationReason.READ_ERROR

    except TeamsClientError as err:
        _LOGGER.warning("[%s] Client error: %s", label, err)
        _report(on_error, err)
        return TerminationReason.READ_ERROR

    return TerminationReason.PEER_CLOSED


async def _write_loop(
    ws_client: TeamsWsClient,
    channels: DuplexChannels,
    on_error: ErrorHook | None,
    label: str,
) -> None:
    """Send queued commands in order; failed commands are dropped."""
    try:
        while True:
            command = await channels.outbound.get()
            try:
                await ws_client.send_json(command.to_wire())
            except TeamsMessageError as err:
                _LOGGER.error(
                    "[%s] Error marshalling command %d: %s",
                    label,
                    command.request_id,
                    err,
                )
                _report(on_error, err)
                continue
            except TeamsClientError as err:
                _LOGGER.warning(
                    "[%s] Error sending command %d: %s", label, command.request_id, err
                )
                _report(on_error, err)
                continue
            _LOGGER.debug(
                "[%s] Sent command %d of type: %s",
                label,
                command.request_id,
                command.action,
            )
    except asyncio.CancelledError:
        _LOGGER.debug("[%s] Leaving write loop due to cancellation", label)
        raise


async def _close(ws_client: TeamsWsClient, timeout: float, label: str) -> None:
    try:
        await asyncio.wait_for(ws_client.close(), timeout=timeout)
    except TimeoutError:
        _LOGGER.warning("[%s] WebSocket close timed out", label)
    except TeamsClientError as err:
        _LOGGER.warning("[%s] WebSocket close failed: %s", label, err)
    except Exception:
        _LOGGER.exception("[%s] Unexpected error closing WebSocket", label)


@dataclass
class _LoopSignals:
    """Signal handlers installed on one loop and the connections they wake."""

    signals: tuple[signal.Signals, ...]
    listeners: set[asyncio.Event] = field(default_factory=set)


# An event loop holds a single handler per signal, so every connection on
# the loop shares one handler that sets each listener's event.
_loop_signals: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, _LoopSignals] = (
    weakref.WeakKeyDictionary()
)


def _install_signal_handlers(event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    registered = _loop_signals.get(loop)
    if registered is None:
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _wake_listeners, loop)
            except (NotImplementedError, RuntimeError, ValueError):
                # Windows loops and non-main threads cannot watch signals.
                _LOGGER.debug("Signal handling unavailable for %s", sig.name)
                continue
            installed.append(sig)
        registered = _loop_signals[loop] = _LoopSignals(tuple(installed))
    registered.listeners.add(event)


def _remove_signal_handlers(event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    registered = _loop_signals.get(loop)
    if registered is None:
        return
    registered.listeners.discard(event)
    if registered.listeners:
        return
    del _loop_signals[loop]
    for sig in registered.signals:
        loop.remove_signal_handler(sig)


def _wake_listeners(loop: asyncio.AbstractEventLoop) -> None:
    registered = _loop_signals.get(loop)
    if registered is None:
        return
    for event in registered.listeners:
        event.set()


def _report(on_error: ErrorHook | None, err: TeamsClientError) -> None:
    if on_error is not None:
        on_error(err)
