"""Tunables for the Teams device client."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigLoadError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8124


class OverflowPolicy(Enum):
    """What the outbound queue does when it is full."""

    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    REJECT = "reject"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Delay between reconnect attempts.

    The default is a fixed half second with no attempt cap, which suits a
    peer on the loopback interface. Set ``multiplier`` above 1 together
    with ``max_delay`` for capped exponential backoff.
    """

    base_delay: float = 0.5
    multiplier: float = 1.0
    max_delay: float | None = None
    max_attempts: int | None = None

    def __post_init__(self) -> None:
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        if self.max_delay is not None and self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be below base_delay")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number ``attempt`` (0-based)."""
        delay = self.base_delay * (self.multiplier**attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def exhausted(self, attempt: int) -> bool:
        """Return True once ``attempt`` consecutive failures hit the cap."""
        return self.max_attempts is not None and attempt >= self.max_attempts


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Connection and queueing settings.

    Args:
        host: Address of the meeting application's local API
        connect_timeout: Seconds allowed for the WebSocket handshake
        ping_interval: Keepalive ping interval (None disables pings)
        close_timeout: Seconds allowed for a closing handshake
        outbound_capacity: Commands buffered while no writer is running
        overflow_policy: Behaviour when the outbound buffer is full
        send_timeout: Seconds a BLOCK send may wait (None waits forever)
        inbound_capacity: Decoded messages buffered ahead of the router
        retry: Reconnect delay policy
        handle_signals: Tear the connection down on SIGINT/SIGTERM
    """

    host: str = DEFAULT_HOST
    connect_timeout: float = 5.0
    ping_interval: int | None = 20
    close_timeout: float = 2.0
    outbound_capacity: int = 32
    overflow_policy: OverflowPolicy = OverflowPolicy.BLOCK
    send_timeout: float | None = 5.0
    inbound_capacity: int = 64
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    handle_signals: bool = True

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("host must not be empty")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.close_timeout <= 0:
            raise ValueError("close_timeout must be positive")
        if self.outbound_capacity < 1:
            raise ValueError("outbound_capacity must be at least 1")
        if self.inbound_capacity < 1:
            raise ValueError("inbound_capacity must be at least 1")
        if self.send_timeout is not None and self.send_timeout < 0:
            raise ValueError("send_timeout must not be negative")


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}")
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise ConfigLoadError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Expected a mapping in {path}")
    return data


def load_config(path: Path | str) -> ClientConfig:
    """Load ClientConfig from a YAML file.

    Keys mirror the ClientConfig fields. ``retry`` is a nested mapping of
    RetryPolicy fields and ``overflow_policy`` is the policy's value
    (``block``, ``drop_oldest`` or ``reject``). Missing keys keep their
    defaults.

    Raises:
        ConfigLoadError: If the file is missing, unreadable, has unknown
            keys or holds invalid values
    """
    path = Path(path)
    data = dict(_load_yaml(path))

    known = {f.name for f in fields(ClientConfig)}
    if unknown := sorted(set(data) - known):
        raise ConfigLoadError(f"Unknown config keys in {path}: {', '.join(unknown)}")

    try:
        if (retry := data.get("retry")) is not None:
            data["retry"] = RetryPolicy(**retry)
        if (policy := data.get("overflow_policy")) is not None:
            data["overflow_policy"] = OverflowPolicy(policy)
        return ClientConfig(**data)
    except (TypeError, ValueError) as err:
        raise ConfigLoadError(f"Invalid config in {path}: {err}") from err
