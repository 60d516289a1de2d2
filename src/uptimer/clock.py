"""Time sources used by schedulers and the orchestrator."""
from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Minimal time source contract."""

    def now(self) -> datetime:
        """Return the current time."""
        ...

    def sleep(self, seconds: float, stop: threading.Event) -> bool:
        """Wait *seconds* or until *stop* is set; return ``True`` when stopped."""
        ...


class SystemClock:
    """Wall-clock implementation backed by ``threading.Event.wait``."""

    def now(self) -> datetime:
        """Return the current UTC time."""
        return datetime.now(UTC)

    def sleep(self, seconds: float, stop: threading.Event) -> bool:
        """Block until the interval elapses or *stop* is set."""
        if seconds <= 0:
            return stop.is_set()
        return stop.wait(seconds)


class FakeClock:
    """Manually advanced clock for simulating elapsed time in tests.

    Sleepers block until :meth:`advance` moves time past their deadline. Fired
    sleepers are removed under the lock before they wake, so
    :meth:`wait_for_sleepers` only observes threads that re-entered
    :meth:`sleep` after finishing their work.
    """

    _POLL_SECONDS = 0.01

    def __init__(self, start: datetime | None = None) -> None:
        """Initialise the clock at *start* (defaults to the Unix epoch)."""
        self._now = start or datetime(1970, 1, 1, tzinfo=UTC)
        self._cond = threading.Condition()
        self._sleepers: dict[object, datetime] = {}

    def now(self) -> datetime:
        """Return the simulated time."""
        with self._cond:
            return self._now

    def sleep(self, seconds: float, stop: threading.Event) -> bool:
        """Block until time is advanced past the deadline or *stop* is set."""
        token = object()
        with self._cond:
            deadline = self._now + timedelta(seconds=seconds)
            if deadline <= self._now:
                return stop.is_set()
            self._sleepers[token] = deadline
            self._cond.notify_all()
            # Event.set() does not notify the condition, hence the polling wait.
            while token in self._sleepers and not stop.is_set():
                self._cond.wait(self._POLL_SECONDS)
            self._sleepers.pop(token, None)
            self._cond.notify_all()
        return stop.is_set()

    def advance(self, seconds: float) -> None:
        """Move time forward and wake every sleeper whose deadline passed."""
        with self._cond:
            self._now += timedelta(seconds=seconds)
            for token, deadline in list(self._sleepers.items()):
                if deadline <= self._now:
                    del self._sleepers[token]
            self._cond.notify_all()

    def sleepers(self) -> int:
        """Return the number of threads currently blocked in :meth:`sleep`."""
        with self._cond:
            return len(self._sleepers)

    def wait_for_sleepers(self, count: int, timeout: float = 5.0) -> bool:
        """Block until at least *count* threads are sleeping."""
        with self._cond:
            return self._cond.wait_for(lambda: len(self._sleepers) >= count, timeout)


__all__ = ["Clock", "FakeClock", "SystemClock"]
