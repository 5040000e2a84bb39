"""Outbound and inbound queues between the client and the socket tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .config import ClientConfig, OverflowPolicy
from .errors import TeamsQueueFullError
from .protocol import InboundMessage, OutboundCommand

_LOGGER = logging.getLogger(__name__)


class OutboundQueue:
    """Bounded FIFO of commands waiting for a connection writer.

    A single writer consumes it, so commands reach the socket in the
    order they were queued.
    """

    def __init__(
        self,
        capacity: int = 32,
        *,
        policy: OverflowPolicy = OverflowPolicy.BLOCK,
        timeout: float | None = 5.0,
    ) -> None:
        self._queue: asyncio.Queue[OutboundCommand] = asyncio.Queue(maxsize=capacity)
        self._policy = policy
        self._timeout = timeout
        self.dropped = 0

    @property
    def policy(self) -> OverflowPolicy:
        return self._policy

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    async def put(self, command: OutboundCommand) -> None:
        """Queue a command according to the overflow policy.

        Raises:
            TeamsQueueFullError: REJECT found the queue full, or BLOCK
                timed out waiting for room
        """
        if self._policy is OverflowPolicy.REJECT:
            try:
                self._queue.put_nowait(command)
            except asyncio.QueueFull as err:
                raise TeamsQueueFullError(
                    f"Outbound queue full, rejected command {command.request_id}"
                ) from err
            return

        if self._policy is OverflowPolicy.DROP_OLDEST:
            while self._queue.full():
                evicted = self._queue.get_nowait()
                self.dropped += 1
                _LOGGER.warning(
                    "Outbound queue full, dropped command %d (%s)",
                    evicted.request_id,
                    evicted.action,
                )
            self._queue.put_nowait(command)
            return

        if self._timeout is None:
            await self._queue.put(command)
            return
        try:
            await asyncio.wait_for(self._queue.put(command), timeout=self._timeout)
        except TimeoutError as err:
            raise TeamsQueueFullError(
                f"Timed out queueing command {command.request_id}"
            ) from err

    async def get(self) -> OutboundCommand:
        return await self._queue.get()

    def get_nowait(self) -> OutboundCommand:
        return self._queue.get_nowait()


@dataclass
class DuplexChannels:
    """The two conduits shared by the client, router and socket tasks."""

    outbound: OutboundQueue = field(default_factory=OutboundQueue)
    inbound: asyncio.Queue[InboundMessage] = field(
        default_factory=lambda: asyncio.Queue(maxsize=64)
    )

    @classmethod
    def from_config(cls, config: ClientConfig) -> DuplexChannels:
        return cls(
            outbound=OutboundQueue(
                config.outbound_capacity,
                policy=config.overflow_policy,
                timeout=config.send_timeout,
            ),
            inbound=asyncio.Queue(maxsize=config.inbound_capacity),
        )
