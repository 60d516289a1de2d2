"""Periodic execution of a single probe."""

from __future__ import annotations

import threading
import traceback
from enum import Enum

from ..clock import Clock
from ..logging import StructuredLogger
from .models import Probe, ProbeOutcome, ResultTally, RetryPredicate, never_retry

DEFAULT_MAX_ATTEMPTS = 3


class SchedulerState(str, Enum):
    """Lifecycle of a periodic scheduler."""

    IDLE = "idle"
    TICKING = "ticking"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED = "stopped"


class PeriodicScheduler:
    """Tick a probe every *interval* seconds until told to stop.

    A failed run whose diagnostic text matches ``should_retry`` is re-run
    immediately without being charged to the failure budget, up to
    ``max_attempts`` runs per tick; a tick that is still failing after the
    last attempt counts as a real failure.
    """

    def __init__(
        self,
        probe: Probe,
        *,
        interval: float,
        clock: Clock,
        logger: StructuredLogger,
        allowed_failures: int,
        should_retry: RetryPredicate = never_retry,
        measure_immediately: bool = True,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        """Configure the schedule; nothing runs until :meth:`run`."""
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        if allowed_failures < 0:
            raise ValueError("allowed_failures must be non-negative")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.probe = probe
        self.interval = interval
        self.allowed_failures = allowed_failures
        self.measure_immediately = measure_immediately
        self.max_attempts = max_attempts
        self.state = SchedulerState.IDLE
        self._clock = clock
        self._logger = logger
        self._should_retry = should_retry
        self._tally = ResultTally()

    @property
    def name(self) -> str:
        """Return the probe's display name."""
        return self.probe.name

    @property
    def summary_phrase(self) -> str:
        """Return the phrase used in the session summary."""
        return self.probe.summary_phrase

    @property
    def tally(self) -> ResultTally:
        """Return a snapshot of the current counters."""
        return self._tally.snapshot()

    def failed(self) -> bool:
        """Return ``True`` once failures exceed the allowed budget."""
        return self._tally.failures > self.allowed_failures

    def run(self, stop: threading.Event) -> ResultTally:
        """Tick until *stop* is set, then return the final tally."""
        self._logger.info(f"Starting measurement: {self.name}")
        if not self.measure_immediately:
            if self._clock.sleep(self.interval, stop):
                return self._stopped()
        while not stop.is_set():
            self.tick()
            if self._clock.sleep(self.interval, stop):
                break
        return self._stopped()

    def tick(self) -> ProbeOutcome:
        """Run one logical tick, including transient retries, and record it."""
        self.state = SchedulerState.TICKING
        outcome = self._invoke()
        attempt = 1
        while not outcome.success and self._should_retry(outcome.diagnostic_text):
            if attempt >= self.max_attempts:
                self._logger.warning(
                    f"[{self.name}] transient failure persisted after {attempt} attempts"
                )
                break
            self.state = SchedulerState.RETRYING
            self._tally.record_retry()
            self._logger.info(f"[{self.name}] transient failure, retrying: {outcome.message}")
            outcome = self._invoke()
            attempt += 1

        if outcome.success:
            self._tally.record_success()
            self.state = SchedulerState.SUCCEEDED
        else:
            self._tally.record_failure(self._clock.now())
            self.state = SchedulerState.FAILED
            self._logger.error(
                f"[{self.name}] FAILURE ({self._tally.failures}/{self.allowed_failures} "
                f"allowed): {outcome.diagnostic_text}",
                measurement=self.name,
                attempts=self._tally.attempts,
                failures=self._tally.failures,
            )
        return outcome

    def _invoke(self) -> ProbeOutcome:
        try:
            return self.probe.run()
        except Exception as exc:  # noqa: BLE001 - a crashing probe is a failed tick
            return ProbeOutcome.failed(
                f"Probe '{self.name}' raised an unexpected error: {exc!r}",
                stderr=traceback.format_exc(),
            )

    def _stopped(self) -> ResultTally:
        self.state = SchedulerState.STOPPED
        tally = self.tally
        self._logger.info(
            f"Stopped measurement: {self.name} "
            f"({tally.failures} of {tally.attempts} attempts failed)"
        )
        return tally


__all__ = ["DEFAULT_MAX_ATTEMPTS", "PeriodicScheduler", "SchedulerState"]
