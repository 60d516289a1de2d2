"""Data models shared by probes, schedulers and the result aggregator."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

RetryPredicate = Callable[[str], bool]

AUTH_EXPIRED_MESSAGE = "Authentication has expired.  Please log back in to re-authenticate."


def auth_expired(output: str) -> bool:
    """Return ``True`` when *output* reports an expired CLI session."""
    return AUTH_EXPIRED_MESSAGE in output


def never_retry(_output: str) -> bool:
    """Retry predicate for probes with no transient failure mode."""
    return False


@dataclass(slots=True, frozen=True)
class ProbeOutcome:
    """Result of a single probe invocation."""

    success: bool
    message: str
    stdout: str = ""
    stderr: str = ""

    @property
    def diagnostic_text(self) -> str:
        """Return the message together with the captured transcript."""
        parts = [self.message]
        if self.stdout:
            parts.append(f"stdout:\n{self.stdout}")
        if self.stderr:
            parts.append(f"stderr:\n{self.stderr}")
        return "\n".join(parts)

    @classmethod
    def ok(cls, message: str) -> ProbeOutcome:
        """Build a successful outcome."""
        return cls(success=True, message=message)

    @classmethod
    def failed(cls, message: str, stdout: str = "", stderr: str = "") -> ProbeOutcome:
        """Build a failed outcome carrying the captured transcript."""
        return cls(success=False, message=message, stdout=stdout, stderr=stderr)


class Probe(Protocol):
    """A typed health check driven by a scheduler."""

    name: str
    summary_phrase: str

    def run(self) -> ProbeOutcome:
        """Perform one check."""
        ...


@dataclass(slots=True)
class ResultTally:
    """Per-probe counters, written only by the owning scheduler."""

    attempts: int = 0
    failures: int = 0
    retries: int = 0
    first_failure_at: datetime | None = None
    last_failure_at: datetime | None = None

    def record_success(self) -> None:
        """Count a successful tick."""
        self.attempts += 1

    def record_failure(self, at: datetime) -> None:
        """Count a failed tick observed at *at*."""
        self.attempts += 1
        self.failures += 1
        if self.first_failure_at is None:
            self.first_failure_at = at
        self.last_failure_at = at

    def record_retry(self) -> None:
        """Count a re-run caused by a transient failure."""
        self.retries += 1

    def snapshot(self) -> ResultTally:
        """Return a copy safe to read from another thread."""
        return replace(self)


__all__ = [
    "AUTH_EXPIRED_MESSAGE",
    "Probe",
    "ProbeOutcome",
    "ResultTally",
    "RetryPredicate",
    "auth_expired",
    "never_retry",
]
