"""Lock-guarded shared state for the Teams client.

Each guarded value owns its own ``threading.Lock`` so accessors stay
safe when called from threads other than the event loop's. No code path
holds more than one of these locks at a time.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Generic, TypeVar

from .protocol import MeetingUpdate

T = TypeVar("T")

CORRELATION_SEED = 1


class Guarded(Generic[T]):
    """A value that is only read or written under its lock."""

    __slots__ = ("_lock", "_value")

    def __init__(self, value: T) -> None:
        self._lock = threading.Lock()
        self._value = value

    def get(self) -> T:
        with self._lock:
            return self._value

    def set(self, value: T) -> T:
        """Store ``value`` and return the previous one."""
        with self._lock:
            previous = self._value
            self._value = value
            return previous

    def update(self, func: Callable[[T], T]) -> T:
        """Replace the value with ``func(value)`` atomically and return it."""
        with self._lock:
            self._value = func(self._value)
            return self._value


class CorrelationCounter:
    """Strictly increasing request ids, pre-incremented from the seed."""

    def __init__(self, seed: int = CORRELATION_SEED) -> None:
        self._value = Guarded(seed)

    def next(self) -> int:
        return self._value.update(lambda current: current + 1)

    @property
    def last(self) -> int:
        return self._value.get()


@dataclass(frozen=True, slots=True)
class MeetingSnapshot:
    """Last known meeting state.

    Nothing marks a snapshot as stale. Callers that need a fresh view
    send ``query-state`` and wait for the event callback.
    """

    update: MeetingUpdate = field(default_factory=MeetingUpdate)
    received_at: datetime | None = None

    @classmethod
    def capture(cls, update: MeetingUpdate) -> MeetingSnapshot:
        return cls(update=update, received_at=datetime.now(tz=UTC))

    @property
    def is_empty(self) -> bool:
        return self.received_at is None
