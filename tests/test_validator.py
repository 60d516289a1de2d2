"""Tests for sample-app log validation."""
from __future__ import annotations

from uptimer.validator import AppLogValidator


def test_first_log_line_is_accepted() -> None:
    """Any app log line is valid the first time."""
    validator = AppLogValidator()

    result = validator.validate("2024-05-01T12:00:00 [APP/PROC/WEB/0] OUT uptimer log line 7\n")

    assert result.valid is True
    assert validator.last_seen == 7


def test_output_without_app_lines_is_rejected() -> None:
    """CLI chatter alone does not prove logs are flowing."""
    validator = AppLogValidator()

    result = validator.validate("Retrieving logs for app uptimer-app in org ...\n")

    assert result.valid is False
    assert validator.last_seen is None


def test_newest_line_must_advance() -> None:
    """Stale logs that repeat the previous counter are rejected."""
    validator = AppLogValidator()
    validator.validate("uptimer log line 3\nuptimer log line 5\n")

    stale = validator.validate("uptimer log line 4\nuptimer log line 5\n")
    fresh = validator.validate("uptimer log line 5\nuptimer log line 9\n")

    assert stale.valid is False
    assert "not newer" in stale.reason
    assert fresh.valid is True
    assert validator.last_seen == 9


def test_highest_counter_wins_regardless_of_order() -> None:
    """Interleaved lines are compared by counter, not position."""
    validator = AppLogValidator()

    validator.validate("uptimer log line 12\nuptimer log line 10\n")

    assert validator.last_seen == 12
