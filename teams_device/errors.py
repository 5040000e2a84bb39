"""Client error types for Teams device API interactions."""

from __future__ import annotations


class TeamsClientError(Exception):
    """Base error for Teams device client failures."""


class TeamsTimeout(TeamsClientError):
    """Timeout while communicating with the meeting application."""


class TeamsConnectionError(TeamsClientError):
    """Network connection to the meeting application failed."""


class TeamsHandshakeError(TeamsClientError):
    """WebSocket handshake failed."""


class TeamsMessageError(TeamsClientError):
    """Inbound payload could not be decoded."""


class TeamsQueueFullError(TeamsClientError):
    """Outbound command could not be queued."""


class TeamsCommandRejected(TeamsClientError):
    """The meeting application answered a command with a non-success response."""

    def __init__(self, request_id: int | None, response: str) -> None:
        super().__init__(f"Command {request_id} rejected: {response}")
        self.request_id = request_id
        self.response = response


class ConfigLoadError(TeamsClientError):
    """A configuration file could not be loaded."""
