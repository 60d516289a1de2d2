"""Aggregation of per-probe tallies into the session verdict."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.table import Table

from ..exit_codes import ExitCode
from .models import ResultTally


@dataclass(slots=True, frozen=True)
class ProbeVerdict:
    """Final counts for one probe compared against its budget."""

    name: str
    summary_phrase: str
    attempts: int
    failures: int
    allowed_failures: int
    retries: int = 0
    first_failure_at: datetime | None = None

    @property
    def within_budget(self) -> bool:
        """Return ``True`` when failures did not exceed the allowed count."""
        return self.failures <= self.allowed_failures

    @classmethod
    def from_tally(
        cls,
        name: str,
        summary_phrase: str,
        tally: ResultTally,
        allowed_failures: int,
    ) -> ProbeVerdict:
        """Freeze a tally into a verdict entry."""
        return cls(
            name=name,
            summary_phrase=summary_phrase,
            attempts=tally.attempts,
            failures=tally.failures,
            allowed_failures=allowed_failures,
            retries=tally.retries,
            first_failure_at=tally.first_failure_at,
        )


@dataclass(slots=True, frozen=True)
class SessionVerdict:
    """Overall outcome of a session."""

    success: bool
    setup_succeeded: bool
    while_succeeded: bool
    probes: Sequence[ProbeVerdict]
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> ExitCode:
        """Translate the verdict into the process exit code."""
        if not self.setup_succeeded:
            return ExitCode.SETUP
        if not self.while_succeeded:
            return ExitCode.WHILE_COMMAND
        if not all(probe.within_budget for probe in self.probes):
            return ExitCode.MEASUREMENT
        return ExitCode.OK


def build_verdict(
    entries: Iterable[ProbeVerdict],
    *,
    setup_succeeded: bool,
    while_succeeded: bool = True,
    metadata: Mapping[str, Any] | None = None,
) -> SessionVerdict:
    """Compute the session verdict; success requires every probe within budget."""
    probes = tuple(entries)
    success = (
        setup_succeeded
        and while_succeeded
        and all(probe.within_budget for probe in probes)
    )
    return SessionVerdict(
        success=success,
        setup_succeeded=setup_succeeded,
        while_succeeded=while_succeeded,
        probes=probes,
        metadata=dict(metadata or {}),
    )


def summary_line(probe: ProbeVerdict) -> str:
    """Return the one-line human summary for *probe*."""
    status = "" if probe.within_budget else "FAILED: "
    return (
        f"{status}[{probe.name}] {probe.failures} of {probe.attempts} attempts to "
        f"{probe.summary_phrase} failed (allowed failures: {probe.allowed_failures})"
    )


def render_summary(verdict: SessionVerdict) -> Table:
    """Build a Rich table summarising every probe."""
    title = "Measurement summary: " + ("PASSED" if verdict.success else "FAILED")
    table = Table(title=title)
    table.add_column("Measurement")
    table.add_column("Attempts", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Allowed", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Result")
    for probe in verdict.probes:
        result = "[green]pass[/green]" if probe.within_budget else "[red]fail[/red]"
        table.add_row(
            probe.name,
            str(probe.attempts),
            str(probe.failures),
            str(probe.allowed_failures),
            str(probe.retries),
            result,
        )
    if not verdict.setup_succeeded:
        table.caption = "Setup failed; no measurements were performed."
    elif not verdict.while_succeeded:
        table.caption = "A 'while' command failed."
    return table


def _sanitize_payload(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_sanitize_payload(item) for item in value]
    return str(value)


def serialize_verdict(verdict: SessionVerdict) -> dict[str, object]:
    """Convert the verdict into the JSON result artifact payload."""
    summaries: list[dict[str, object]] = []
    for probe in verdict.probes:
        summaries.append(
            {
                "name": probe.name,
                "summary_phrase": probe.summary_phrase,
                "attempts": probe.attempts,
                "failed": probe.failures,
                "allowed_failures": probe.allowed_failures,
                "retries": probe.retries,
                "within_budget": probe.within_budget,
                "first_failure_at": _sanitize_payload(probe.first_failure_at),
            }
        )
    return {
        "success": verdict.success,
        "setup_succeeded": verdict.setup_succeeded,
        "while_succeeded": verdict.while_succeeded,
        "exit_code": int(verdict.exit_code),
        "summaries": summaries,
        "metadata": _sanitize_payload(verdict.metadata),
    }


def write_result_file(path: Path, verdict: SessionVerdict) -> None:
    """Write the JSON result artifact to *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = serialize_verdict(verdict)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


__all__ = [
    "ProbeVerdict",
    "SessionVerdict",
    "build_verdict",
    "render_summary",
    "serialize_verdict",
    "summary_line",
    "write_result_file",
]
