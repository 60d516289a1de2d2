"""Probe implementations.

Command-driven probes receive a zero-argument callable that returns a fresh
command sequence for every run, and own a buffered executor whose transcript
is attached to failed outcomes.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import httpx

from ..executor import CommandExecutor, CommandSpec, ExecutionError
from ..validator import AppLogValidator
from .models import ProbeOutcome

CommandSource = Callable[[], Sequence[CommandSpec]]

HTTP_TIMEOUT_SECONDS = 30.0
STREAMING_TIMEOUT_SECONDS = 15.0


def build_http_client(timeout: float = HTTP_TIMEOUT_SECONDS) -> httpx.Client:
    """Return a client that never reuses connections and skips TLS verification.

    Routing certificates on test environments are self-signed, and a fresh
    connection per request is what surfaces router-level failures.
    """
    return httpx.Client(
        timeout=timeout,
        verify=False,
        follow_redirects=False,
        limits=httpx.Limits(max_keepalive_connections=0),
        headers={"Connection": "close"},
    )


class HTTPAvailabilityProbe:
    """GET the app URL and expect a 2xx or 3xx response."""

    name = "HTTP availability"
    summary_phrase = "perform get requests"

    def __init__(self, url: str, client: httpx.Client) -> None:
        """Store the target URL and the HTTP client."""
        self.url = url
        self._client = client

    def run(self) -> ProbeOutcome:
        """Issue one request."""
        try:
            response = self._client.get(self.url)
        except httpx.HTTPError as exc:
            return ProbeOutcome.failed(f"HTTP request to {self.url} failed: {exc}")
        status = response.status_code
        if 200 <= status < 400:
            return ProbeOutcome.ok(f"HTTP request returned status {status}")
        return ProbeOutcome.failed(
            f"HTTP request to {self.url} returned status {status}",
            stdout=response.text,
        )


class _CommandProbe:
    name = ""
    summary_phrase = ""

    def __init__(self, commands: CommandSource, executor: CommandExecutor) -> None:
        self._commands = commands
        self.executor = executor

    def _failed(self, message: str) -> ProbeOutcome:
        stdout, stderr = self.executor.drain()
        return ProbeOutcome.failed(message, stdout=stdout, stderr=stderr)


class DeployabilityProbe(_CommandProbe):
    """Push and delete a uniquely named app."""

    name = "App pushability"
    summary_phrase = "push and delete an app"

    def __init__(
        self,
        commands: CommandSource,
        executor: CommandExecutor,
        *,
        name: str | None = None,
    ) -> None:
        """Allow a distinct display name, e.g. for the Windows variant."""
        super().__init__(commands, executor)
        if name is not None:
            self.name = name

    def run(self) -> ProbeOutcome:
        """Run the push + delete sequence."""
        self.executor.reset()
        try:
            self.executor.run_sequence(self._commands())
        except ExecutionError as exc:
            return self._failed(f"App failed to push or delete: {exc}")
        self.executor.reset()
        return ProbeOutcome.ok("App pushed and deleted")


class RecentLogsProbe(_CommandProbe):
    """Fetch recent logs and check they contain fresh app output."""

    name = "Recent logs fetching"
    summary_phrase = "fetch recent logs"

    def __init__(
        self,
        commands: CommandSource,
        executor: CommandExecutor,
        validator: AppLogValidator,
    ) -> None:
        """Store the command source, executor and log validator."""
        super().__init__(commands, executor)
        self.validator = validator

    def run(self) -> ProbeOutcome:
        """Fetch and validate logs."""
        self.executor.reset()
        try:
            self.executor.run_sequence(self._commands())
        except ExecutionError as exc:
            return self._failed(f"Failed to fetch logs: {exc}")
        return self._validate()

    def _validate(self) -> ProbeOutcome:
        stdout, _stderr = self.executor.transcript()
        result = self.validator.validate(stdout)
        if not result.valid:
            return self._failed(f"Logs did not contain expected app output: {result.reason}")
        self.executor.reset()
        return ProbeOutcome.ok(result.reason)


class SyslogDrainProbe(RecentLogsProbe):
    """Fetch logs forwarded to the syslog sink app."""

    name = "App syslog availability"
    summary_phrase = "get logs from syslog drain"


class StreamingLogsProbe(RecentLogsProbe):
    """Tail app logs for a bounded time, then validate what arrived."""

    name = "Streaming logs"
    summary_phrase = "stream logs"

    def __init__(
        self,
        commands: CommandSource,
        executor: CommandExecutor,
        validator: AppLogValidator,
        *,
        timeout: float = STREAMING_TIMEOUT_SECONDS,
    ) -> None:
        """Store the per-run streaming deadline alongside the usual collaborators."""
        super().__init__(commands, executor, validator)
        self.timeout = timeout

    def run(self) -> ProbeOutcome:
        """Stream until the deadline kills the tail command, then validate."""
        self.executor.reset()
        steps = list(self._commands())
        try:
            self.executor.run_sequence(steps, timeout=self.timeout)
        except ExecutionError as exc:
            # Only the final tail command is expected to run until the deadline.
            if not (exc.timed_out and exc.index == len(steps) - 1):
                return self._failed(f"Failed to stream logs: {exc}")
        return self._validate()


__all__ = [
    "CommandSource",
    "DeployabilityProbe",
    "HTTPAvailabilityProbe",
    "RecentLogsProbe",
    "StreamingLogsProbe",
    "SyslogDrainProbe",
    "build_http_client",
]
