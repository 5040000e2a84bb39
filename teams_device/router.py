"""Classify inbound messages and apply them to the client."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol

from .errors import TeamsClientError, TeamsCommandRejected
from .protocol import InboundKind, InboundMessage, MeetingUpdate, mask_token

_LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[MeetingUpdate], Awaitable[None] | None]


class RouteOutcome(Enum):
    """What routing did with a message."""

    TOKEN_REFRESHED = "token_refreshed"
    ACKNOWLEDGED = "acknowledged"
    STATE_UPDATED = "state_updated"
    REJECTED = "rejected"
    IGNORED = "ignored"


class RoutableClient(Protocol):
    """What the router needs from its owner."""

    label: str

    @property
    def event_callback(self) -> EventCallback | None: ...

    def set_token(self, token: str) -> None: ...

    def store_update(self, update: MeetingUpdate) -> None: ...

    def report_error(self, err: TeamsClientError) -> None: ...


async def route(client: RoutableClient, message: InboundMessage) -> RouteOutcome:
    """Apply one inbound message. The first matching rule wins.

    1. A token refresh replaces the stored token.
    2. A success acknowledgement is logged only.
    3. A meeting update replaces the snapshot, then reaches the event
       callback, which runs on the router task and should return quickly.
    4. Any other acknowledgement is reported as a rejected command.

    The order is the one InboundMessage.kind classifies by.
    """
    kind = message.kind

    if kind is InboundKind.TOKEN_REFRESH and message.token_refresh:
        client.set_token(message.token_refresh)
        _LOGGER.info("[%s] New token: %s", client.label, mask_token(message.token_refresh))
        return RouteOutcome.TOKEN_REFRESHED

    if kind is InboundKind.ACKNOWLEDGEMENT:
        _LOGGER.debug(
            "[%s] Teams successfully acknowledged message: %s",
            client.label,
            message.request_id,
        )
        return RouteOutcome.ACKNOWLEDGED

    if kind is InboundKind.MEETING_UPDATE and message.meeting_update is not None:
        client.store_update(message.meeting_update)
        await _notify(client, message.meeting_update)
        return RouteOutcome.STATE_UPDATED

    if kind is InboundKind.REJECTION:
        _LOGGER.warning(
            "[%s] Teams rejected message %s: %s",
            client.label,
            message.request_id,
            message.response,
        )
        client.report_error(
            TeamsCommandRejected(message.request_id, message.response or "")
        )
        return RouteOutcome.REJECTED

    _LOGGER.debug("[%s] Ignoring message with no known fields", client.label)
    return RouteOutcome.IGNORED


async def _notify(client: RoutableClient, update: MeetingUpdate) -> None:
    callback = client.event_callback
    if callback is None:
        return
    try:
        result = callback(update)
        if inspect.isawaitable(result):
            await result
    except Exception as err:
        _LOGGER.exception("[%s] Event callback error: %s", client.label, err)
