"""Tests for verdict aggregation and the JSON result artifact."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest
from rich.console import Console

from uptimer.exit_codes import ExitCode
from uptimer.measurement import (
    ProbeVerdict,
    ResultTally,
    build_verdict,
    render_summary,
    serialize_verdict,
    summary_line,
    write_result_file,
)


def _probe(name: str, failures: int, allowed: int, attempts: int = 10) -> ProbeVerdict:
    return ProbeVerdict(
        name=name,
        summary_phrase="do things",
        attempts=attempts,
        failures=failures,
        allowed_failures=allowed,
    )


@pytest.mark.parametrize(
    ("failures", "allowed", "expected"),
    [(0, 0, True), (2, 2, True), (3, 2, False), (1, 0, False)],
)
def test_probe_within_budget_is_inclusive(failures: int, allowed: int, expected: bool) -> None:
    """Failures equal to the budget still pass."""
    assert _probe("HTTP availability", failures, allowed).within_budget is expected


def test_from_tally_copies_counters() -> None:
    """Tally counters and the first failure time are carried into the verdict."""
    at = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    tally = ResultTally()
    tally.record_success()
    tally.record_failure(at)
    tally.record_retry()

    verdict = ProbeVerdict.from_tally("Streaming logs", "stream logs", tally, 2)

    assert (verdict.attempts, verdict.failures, verdict.retries) == (2, 1, 1)
    assert verdict.first_failure_at == at
    assert verdict.allowed_failures == 2


def test_one_probe_over_budget_fails_the_session() -> None:
    """Success requires every probe to stay within its budget."""
    verdict = build_verdict(
        [_probe("HTTP availability", 0, 5), _probe("Recent logs fetching", 3, 2)],
        setup_succeeded=True,
    )

    assert verdict.success is False
    assert verdict.exit_code is ExitCode.MEASUREMENT


def test_all_probes_within_budget_pass() -> None:
    """A clean session exits zero."""
    verdict = build_verdict(
        [_probe("HTTP availability", 1, 5), _probe("App pushability", 2, 2)],
        setup_succeeded=True,
    )

    assert verdict.success is True
    assert verdict.exit_code is ExitCode.OK


def test_setup_failure_takes_precedence() -> None:
    """A failed setup is reported as such even with no probe data."""
    verdict = build_verdict([], setup_succeeded=False, while_succeeded=False)

    assert verdict.success is False
    assert verdict.exit_code is ExitCode.SETUP


def test_while_command_failure_fails_a_clean_session() -> None:
    """A failing 'while' command is fatal even when every probe passed."""
    verdict = build_verdict(
        [_probe("HTTP availability", 0, 5)],
        setup_succeeded=True,
        while_succeeded=False,
    )

    assert verdict.success is False
    assert verdict.exit_code is ExitCode.WHILE_COMMAND


def test_summary_line_marks_failures() -> None:
    """Summary lines report counts and flag probes over budget."""
    assert summary_line(_probe("App pushability", 1, 2, attempts=6)) == (
        "[App pushability] 1 of 6 attempts to do things failed (allowed failures: 2)"
    )
    assert summary_line(_probe("App pushability", 3, 2)).startswith("FAILED: [App pushability]")


def test_serialize_verdict_layout() -> None:
    """The artifact lists every probe summary and the overall outcome."""
    at = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    verdict = build_verdict(
        [
            ProbeVerdict("HTTP availability", "perform get requests", 100, 3, 5, 1, at),
            _probe("Streaming logs", 0, 2),
        ],
        setup_succeeded=True,
        metadata={"version": "0.1.0", "started_at": at},
    )

    payload = serialize_verdict(verdict)

    assert payload["success"] is True
    assert payload["exit_code"] == 0
    assert payload["metadata"] == {"version": "0.1.0", "started_at": at.isoformat()}
    first = payload["summaries"][0]  # type: ignore[index]
    assert first == {
        "name": "HTTP availability",
        "summary_phrase": "perform get requests",
        "attempts": 100,
        "failed": 3,
        "allowed_failures": 5,
        "retries": 1,
        "within_budget": True,
        "first_failure_at": at.isoformat(),
    }


def test_write_result_file_creates_parent_directories(tmp_path: Path) -> None:
    """The artifact is valid JSON written to the requested path."""
    target = tmp_path / "nested" / "results.json"
    verdict = build_verdict([_probe("HTTP availability", 6, 5)], setup_succeeded=True)

    write_result_file(target, verdict)

    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["success"] is False
    assert data["exit_code"] == int(ExitCode.MEASUREMENT)
    assert data["summaries"][0]["within_budget"] is False


def test_render_summary_lists_every_probe() -> None:
    """The Rich table names each measurement and the overall result."""
    verdict = build_verdict(
        [_probe("HTTP availability", 0, 5), _probe("Recent logs fetching", 3, 2)],
        setup_succeeded=True,
    )
    console = Console(record=True, width=120)

    console.print(render_summary(verdict))

    text = console.export_text()
    assert "Measurement summary: FAILED" in text
    assert "HTTP availability" in text
    assert "Recent logs fetching" in text


def test_render_summary_explains_setup_failure() -> None:
    """With no measurements the table says why."""
    console = Console(record=True, width=120)

    console.print(render_summary(build_verdict([], setup_succeeded=False)))

    assert "Setup failed" in console.export_text()
