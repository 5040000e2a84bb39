"""Tests for the single-connection loop."""

from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from teams_device.channels import DuplexChannels
from teams_device import connection
from teams_device.connection import TerminationReason, run_connection
from teams_device.errors import TeamsConnectionError, TeamsMessageError
from teams_device.protocol import OutboundCommand, TeamsAction, build_command

from .fakes import meeting_update_frame, wait_until

URI = "ws://127.0.0.1:8124/?protocol-version=2.0.0&token=secret"


@pytest.fixture
def channels(fast_config) -> DuplexChannels:
    return DuplexChannels.from_config(fast_config)


def _start(channels, parent_cancel, config, **kwargs) -> asyncio.Task[TerminationReason]:
    return asyncio.create_task(
        run_connection(URI, channels, parent_cancel, config=config, **kwargs)
    )


class TestOpen:
    """Tests for opening the connection."""

    @pytest.mark.asyncio
    async def test_open_failure_raises(self, endpoint, channels, fast_config):
        """Test an unreachable endpoint raises without retrying."""
        endpoint.reachable = False

        with pytest.raises(TeamsConnectionError):
            await run_connection(URI, channels, asyncio.Event(), config=fast_config)
        assert endpoint.attempts == 1

    @pytest.mark.asyncio
    async def test_on_open_called(self, endpoint, channels, fast_config):
        """Test on_open fires once the socket is open."""
        on_open = MagicMock()
        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config, on_open=on_open)

        await wait_until(lambda: on_open.called)
        assert endpoint.uris == [URI]

        parent_cancel.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_on_open_failure_closes_socket(self, endpoint, channels, fast_config):
        """Test an on_open error still releases the socket."""
        on_open = MagicMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            await run_connection(
                URI, channels, asyncio.Event(), config=fast_config, on_open=on_open
            )
        assert endpoint.latest.closed


class TestReader:
    """Tests for inbound processing."""

    @pytest.mark.asyncio
    async def test_frames_forwarded_in_order(self, endpoint, channels, fast_config):
        """Test decoded frames reach the inbound queue in arrival order."""
        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config)
        await wait_until(lambda: endpoint.connections)

        endpoint.latest.push({"tokenRefresh": "abc"})
        endpoint.latest.push(meeting_update_frame(isMuted=True))

        first = await asyncio.wait_for(channels.inbound.get(), timeout=1.0)
        second = await asyncio.wait_for(channels.inbound.get(), timeout=1.0)
        assert first.token_refresh == "abc"
        assert second.meeting_update is not None
        assert second.meeting_update.state.is_muted

        parent_cancel.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_malformed_frame_skipped(self, endpoint, channels, fast_config):
        """Test undecodable frames are reported and the connection stays up."""
        errors = []
        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config, on_error=errors.append)
        await wait_until(lambda: endpoint.connections)

        endpoint.latest.push("not json {")
        endpoint.latest.push({"requestId": "two"})
        endpoint.latest.push({"requestId": 2, "response": "Success"})

        message = await asyncio.wait_for(channels.inbound.get(), timeout=1.0)
        assert message.request_id == 2
        assert len(errors) == 2
        assert all(isinstance(err, TeamsMessageError) for err in errors)
        assert not task.done()

        parent_cancel.set()
        assert await asyncio.wait_for(task, timeout=1.0) is TerminationReason.CANCELLED

    @pytest.mark.asyncio
    async def test_peer_close_ends_loop(self, endpoint, channels, fast_config):
        """Test a peer close returns PEER_CLOSED and closes the socket."""
        errors = []
        task = _start(channels, asyncio.Event(), fast_config, on_error=errors.append)
        await wait_until(lambda: endpoint.connections)

        endpoint.latest.drop()

        assert await asyncio.wait_for(task, timeout=1.0) is TerminationReason.PEER_CLOSED
        assert endpoint.latest.closed
        assert any(isinstance(err, TeamsConnectionError) for err in errors)


class TestWriter:
    """Tests for outbound processing."""

    @pytest.mark.asyncio
    async def test_commands_sent_in_order(self, endpoint, channels, fast_config):
        """Test queued commands are written in submission order."""
        for request_id in (2, 3, 4):
            await channels.outbound.put(build_command(TeamsAction.TOGGLE_MUTE, request_id))

        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config)
        await wait_until(lambda: endpoint.connections and len(endpoint.latest.sent) == 3)

        assert [frame["requestId"] for frame in endpoint.latest.sent_json()] == [2, 3, 4]
        assert endpoint.latest.sent[0] == '{"action":"toggle-mute","requestId":2}'

        parent_cancel.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_unserializable_command_dropped(self, endpoint, channels, fast_config):
        """Test a command that cannot be serialized is dropped, not retried."""
        errors = []
        await channels.outbound.put(
            OutboundCommand(action="toggle-ui", request_id=2, parameters={"x": object()})
        )
        await channels.outbound.put(build_command(TeamsAction.LEAVE, 3))

        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config, on_error=errors.append)
        await wait_until(lambda: endpoint.connections and endpoint.latest.sent)

        assert endpoint.latest.sent_json() == [{"action": "leave-call", "requestId": 3}]
        assert len(errors) == 1
        assert isinstance(errors[0], TeamsMessageError)

        parent_cancel.set()
        await asyncio.wait_for(task, timeout=1.0)

    @pytest.mark.asyncio
    async def test_writer_stops_without_draining(self, endpoint, channels, fast_config):
        """Test commands queued after teardown stay queued."""
        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config)
        await wait_until(lambda: endpoint.connections)

        parent_cancel.set()
        await asyncio.wait_for(task, timeout=1.0)
        await channels.outbound.put(build_command(TeamsAction.TOGGLE_MUTE, 2))
        await asyncio.sleep(0.01)

        assert channels.outbound.qsize() == 1
        assert endpoint.latest.sent == []


class TestTermination:
    """Tests for termination paths."""

    @pytest.mark.asyncio
    async def test_parent_cancel(self, endpoint, channels, fast_config):
        """Test parent cancellation closes the socket."""
        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config)
        await wait_until(lambda: endpoint.connections)

        parent_cancel.set()

        assert await asyncio.wait_for(task, timeout=1.0) is TerminationReason.CANCELLED
        assert endpoint.latest.closed

    @pytest.mark.asyncio
    async def test_os_signal(self, endpoint, channels, fast_config):
        """Test an OS exit signal ends the loop with SIGNAL."""
        captured: list[asyncio.Event] = []

        def fake_install(event):
            captured.append(event)
            return ()

        config = replace(fast_config, handle_signals=True)
        with patch(
            "teams_device.connection._install_signal_handlers", side_effect=fake_install
        ):
            task = _start(channels, asyncio.Event(), config)
            await wait_until(lambda: captured)
            captured[0].set()

            assert await asyncio.wait_for(task, timeout=1.0) is TerminationReason.SIGNAL
        assert endpoint.latest.closed

    @pytest.mark.asyncio
    async def test_outer_cancellation_still_closes(self, endpoint, channels, fast_config):
        """Test cancelling run_connection itself releases the socket."""
        task = _start(channels, asyncio.Event(), fast_config)
        await wait_until(lambda: endpoint.connections)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert endpoint.latest.closed

    @pytest.mark.asyncio
    async def test_wire_format_of_sent_frames(self, endpoint, channels, fast_config):
        """Test a modifier is sent as a parameters object."""
        await channels.outbound.put(build_command("send-reaction", 2, "like"))
        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config)
        await wait_until(lambda: endpoint.connections and endpoint.latest.sent)

        assert json.loads(endpoint.latest.sent[0]) == {
            "action": "send-reaction",
            "parameters": {"type": "like"},
            "requestId": 2,
        }

        parent_cancel.set()
        await asyncio.wait_for(task, timeout=1.0)


def _other_tasks() -> list[asyncio.Task]:
    current = asyncio.current_task()
    return [task for task in asyncio.all_tasks() if task is not current]


class TestCloseFailures:
    """Tests for teardown when closing the socket fails."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "close_error",
        [ConnectionResetError("reset"), TeamsConnectionError("closed"), RuntimeError("bug")],
    )
    async def test_close_error_still_returns(
        self, endpoint, channels, fast_config, close_error
    ):
        """Test a failing close is logged and both loops are still awaited."""
        parent_cancel = asyncio.Event()
        task = _start(channels, parent_cancel, fast_config)
        await wait_until(lambda: endpoint.connections)
        endpoint.latest.close = AsyncMock(side_effect=close_error)

        parent_cancel.set()

        assert await asyncio.wait_for(task, timeout=1.0) is TerminationReason.CANCELLED
        endpoint.latest.close.assert_awaited_once()
        assert _other_tasks() == []

    @pytest.mark.asyncio
    async def test_close_error_after_peer_close(self, endpoint, channels, fast_config):
        """Test a peer close followed by a failing close reports PEER_CLOSED."""
        task = _start(channels, asyncio.Event(), fast_config)
        await wait_until(lambda: endpoint.connections)
        endpoint.latest.close = AsyncMock(side_effect=ConnectionResetError("reset"))

        endpoint.latest.drop()

        assert await asyncio.wait_for(task, timeout=1.0) is TerminationReason.PEER_CLOSED


@pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers need Unix")
class TestSharedSignalHandlers:
    """Tests for several connections watching signals on one loop."""

    @pytest.mark.asyncio
    async def test_handler_outlives_other_connection(self, endpoint, fast_config):
        """Test ending one connection leaves the other's signal handler in place."""
        config = replace(fast_config, handle_signals=True)
        first_cancel, second_cancel = asyncio.Event(), asyncio.Event()
        first = asyncio.create_task(
            run_connection(
                URI, DuplexChannels.from_config(config), first_cancel, config=config
            )
        )
        second = asyncio.create_task(
            run_connection(
                URI, DuplexChannels.from_config(config), second_cancel, config=config
            )
        )
        await wait_until(lambda: len(endpoint.connections) == 2)
        await asyncio.sleep(0.01)

        second_cancel.set()
        assert await asyncio.wait_for(second, timeout=1.0) is TerminationReason.CANCELLED

        loop = asyncio.get_running_loop()
        assert loop in connection._loop_signals
        assert signal.getsignal(signal.SIGTERM) is not signal.SIG_DFL

        os.kill(os.getpid(), signal.SIGTERM)

        assert await asyncio.wait_for(first, timeout=1.0) is TerminationReason.SIGNAL
        assert loop not in connection._loop_signals
        assert signal.getsignal(signal.SIGTERM) is signal.SIG_DFL

    @pytest.mark.asyncio
    async def test_signal_wakes_every_connection(self, endpoint, fast_config):
        """Test one signal ends all connections on the loop."""
        config = replace(fast_config, handle_signals=True)
        tasks = [
            asyncio.create_task(
                run_connection(
                    URI, DuplexChannels.from_config(config), asyncio.Event(), config=config
                )
            )
            for _ in range(2)
        ]
        await wait_until(lambda: len(endpoint.connections) == 2)
        await asyncio.sleep(0.01)

        connection._wake_listeners(asyncio.get_running_loop())

        results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=1.0)
        assert results == [TerminationReason.SIGNAL, TerminationReason.SIGNAL]
