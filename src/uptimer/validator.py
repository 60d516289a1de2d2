"""Validation of sample-app log output."""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass

LOG_LINE_PATTERN = re.compile(r"uptimer log line (\d+)")


@dataclass(slots=True, frozen=True)
class ValidationResult:
    """Outcome of inspecting captured log text."""

    valid: bool
    reason: str


class AppLogValidator:
    """Check that captured logs contain a newer sample-app log line than last time.

    The sample app prints ``uptimer log line <n>`` with an increasing counter.
    Logs are considered healthy when the highest counter seen is newer than the
    one observed by the previous validation. Each probe owns its validator.
    """

    def __init__(self) -> None:
        """Start without any observed log line."""
        self._last_seen: int | None = None
        self._lock = threading.Lock()

    @property
    def last_seen(self) -> int | None:
        """Return the highest counter observed so far."""
        return self._last_seen

    def validate(self, text: str) -> ValidationResult:
        """Inspect *text* and remember the newest counter when it advanced."""
        numbers = [int(match) for match in LOG_LINE_PATTERN.findall(text)]
        if not numbers:
            return ValidationResult(False, "No app log lines found in output.")
        newest = max(numbers)
        with self._lock:
            previous = self._last_seen
            if previous is not None and newest <= previous:
                return ValidationResult(
                    False,
                    f"Latest app log line {newest} is not newer than previously seen {previous}.",
                )
            self._last_seen = newest
        return ValidationResult(True, f"Found app log line {newest}.")


__all__ = ["AppLogValidator", "LOG_LINE_PATTERN", "ValidationResult"]
