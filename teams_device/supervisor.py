"""Reconnect loop around the connection loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aiohttp

from .channels import DuplexChannels
from .config import ClientConfig
from .connection import run_connection
from .errors import TeamsClientError

_LOGGER = logging.getLogger(__name__)


class SupervisedClient(Protocol):
    """What the supervisor needs from its owner."""

    label: str
    config: ClientConfig
    channels: DuplexChannels
    session: aiohttp.ClientSession | None

    @property
    def auto_reconnect(self) -> bool: ...

    @property
    def disconnect_event(self) -> asyncio.Event: ...

    def endpoint_uri(self) -> str: ...

    def set_alive(self, alive: bool) -> None: ...

    def report_error(self, err: TeamsClientError) -> None: ...


async def supervise(client: SupervisedClient) -> None:
    """Keep a connection running until auto-reconnect is switched off.

    Each pass runs one connection loop to completion, then sleeps the
    retry delay. The sleep ends early when the client disconnects. The
    URI is rebuilt per attempt so a refreshed token is presented.
    """
    policy = client.config.retry
    disconnect_event = client.disconnect_event
    failures = 0
    attempt = 0

    while True:
        attempt += 1
        _LOGGER.debug("[%s] Connection attempt #%d", client.label, attempt)
        try:
            reason = await run_connection(
                client.endpoint_uri(),
                client.channels,
                disconnect_event,
                config=client.config,
                session=client.session,
                on_open=lambda: client.set_alive(True),
                on_error=client.report_error,
                label=client.label,
            )
        except TeamsClientError as err:
            failures += 1
            _LOGGER.warning("[%s] Connection failed: %s", client.label, err)
            client.report_error(err)
        else:
            failures = 0
            _LOGGER.info("[%s] Connection ended: %s", client.label, reason.value)
        finally:
            client.set_alive(False)

        if not client.auto_reconnect:
            _LOGGER.info("[%s] Auto-reconnect disabled, stopping", client.label)
            return

        if policy.exhausted(failures):
            _LOGGER.error(
                "[%s] Giving up after %d failed attempts", client.label, failures
            )
            return

        delay = policy.delay(max(failures - 1, 0))
        _LOGGER.debug("[%s] Reconnecting in %.2fs", client.label, delay)
        try:
            await asyncio.wait_for(disconnect_event.wait(), timeout=delay)
        except TimeoutError:
            continue

        if not client.auto_reconnect:
            _LOGGER.info("[%s] Disconnected while waiting to retry", client.label)
            return
