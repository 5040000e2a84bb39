"""Pytest configuration and fixtures for teams_device tests."""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import patch

import pytest

from teams_device.config import ClientConfig, RetryPolicy

from .fakes import FakeEndpoint


@pytest.fixture
def endpoint() -> Iterator[FakeEndpoint]:
    """Patch the transport so sockets come from a FakeEndpoint."""
    fake = FakeEndpoint()
    with patch("teams_device.transport.ws_client.connect_websocket", new=fake):
        yield fake


@pytest.fixture
def fast_config() -> ClientConfig:
    """Client settings with short timeouts and no signal handlers."""
    return ClientConfig(
        connect_timeout=1.0,
        close_timeout=0.5,
        send_timeout=0.5,
        retry=RetryPolicy(base_delay=0.01),
        handle_signals=False,
    )
