"""Subprocess execution for workflow command sequences."""
from __future__ import annotations

import io
import os
import shlex
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import IO, TextIO

from .logging import StructuredLogger


class CommandStatus(str, Enum):
    """Terminal state of a single command."""

    SUCCESS = "success"
    FAILURE = "failure"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class CommandSpec:
    """An executable unit produced by a workflow."""

    program: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Path | None = None
    sensitive: bool = False

    def __post_init__(self) -> None:
        """Freeze the argument tuple and environment mapping."""
        object.__setattr__(self, "args", tuple(str(arg) for arg in self.args))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def argv(self) -> list[str]:
        """Return the full argument vector."""
        return [self.program, *self.args]

    def describe(self) -> str:
        """Return a printable form of the command, masking sensitive arguments."""
        if self.sensitive:
            return f"{self.program} {self.args[0] if self.args else ''} ***".strip()
        return shlex.join(self.argv)


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Captured outcome of one command run."""

    command: CommandSpec
    status: CommandStatus
    returncode: int | None
    stdout: str
    stderr: str
    elapsed: float

    @property
    def ok(self) -> bool:
        """Return ``True`` when the command exited zero."""
        return self.status is CommandStatus.SUCCESS


class ExecutionError(RuntimeError):
    """Raised when a step of a command sequence fails."""

    def __init__(
        self,
        index: int,
        command: CommandSpec,
        message: str,
        *,
        result: CommandResult | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Capture the failing step and the transcript accumulated so far."""
        super().__init__(f"step {index} ({command.describe()}) {message}")
        self.index = index
        self.command = command
        self.result = result
        self.stdout = stdout
        self.stderr = stderr

    @property
    def timed_out(self) -> bool:
        """Return ``True`` when the step was killed by the sequence deadline."""
        return self.result is not None and self.result.status is CommandStatus.TIMED_OUT

    @property
    def cancelled(self) -> bool:
        """Return ``True`` when the sequence was stopped by its cancel event."""
        return self.result is not None and self.result.status is CommandStatus.CANCELLED


PopenFactory = Callable[..., subprocess.Popen[str]]

CANCEL_POLL_SECONDS = 0.1
PUMP_JOIN_SECONDS = 5.0


class CommandExecutor:
    """Run command sequences and copy their output into two sinks."""

    def __init__(
        self,
        stdout: TextIO,
        stderr: TextIO,
        *,
        popen: PopenFactory = subprocess.Popen,
    ) -> None:
        """Store the output sinks and the process factory."""
        self.stdout = stdout
        self.stderr = stderr
        self._popen = popen

    @classmethod
    def live(cls) -> CommandExecutor:
        """Return an executor that writes to the process's terminal streams."""
        return cls(sys.stdout, sys.stderr)

    @classmethod
    def buffered(cls) -> CommandExecutor:
        """Return an executor that captures output in memory."""
        return cls(io.StringIO(), io.StringIO())

    @property
    def is_buffered(self) -> bool:
        """Return ``True`` when both sinks are in-memory buffers."""
        return isinstance(self.stdout, io.StringIO) and isinstance(self.stderr, io.StringIO)

    def transcript(self) -> tuple[str, str]:
        """Return the buffered stdout/stderr without clearing them."""
        if not self.is_buffered:
            return "", ""
        return self.stdout.getvalue(), self.stderr.getvalue()  # type: ignore[attr-defined]

    def reset(self) -> None:
        """Clear in-memory buffers; no-op for live sinks."""
        for sink in (self.stdout, self.stderr):
            if isinstance(sink, io.StringIO):
                sink.seek(0)
                sink.truncate(0)

    def drain(self) -> tuple[str, str]:
        """Return the buffered transcript and reset the buffers."""
        transcript = self.transcript()
        self.reset()
        return transcript

    def run_sequence(
        self,
        steps: Sequence[CommandSpec],
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> tuple[CommandResult, ...]:
        """Run *steps* in order, raising :class:`ExecutionError` on the first failure.

        *timeout* bounds the whole sequence; a step still running at the
        deadline is killed and reported as timed out. Setting *cancel* kills
        the running step and prevents later steps from starting.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        results: list[CommandResult] = []
        for index, step in enumerate(steps):
            if cancel is not None and cancel.is_set():
                result = CommandResult(
                    command=step,
                    status=CommandStatus.CANCELLED,
                    returncode=None,
                    stdout="",
                    stderr="",
                    elapsed=0.0,
                )
                stdout, stderr = self.transcript()
                raise ExecutionError(
                    index,
                    step,
                    "cancelled before start",
                    result=result,
                    stdout=stdout,
                    stderr=stderr,
                )
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                result = self.run(step, timeout=remaining, cancel=cancel)
            except OSError as exc:
                stdout, stderr = self.transcript()
                raise ExecutionError(
                    index,
                    step,
                    f"failed to start: {exc}",
                    stdout=stdout,
                    stderr=stderr,
                ) from exc
            results.append(result)
            if not result.ok:
                stdout, stderr = self.transcript()
                raise ExecutionError(
                    index,
                    step,
                    _failure_message(result),
                    result=result,
                    stdout=stdout,
                    stderr=stderr,
                )
        return tuple(results)

    def run(
        self,
        step: CommandSpec,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        """Run a single command, always reaping the child before returning.

        Output is copied into the sinks line by line while the child runs, so
        live executors stream to the terminal.
        """
        env = {**os.environ, **step.env}
        start = time.monotonic()
        process = self._popen(  # noqa: S603
            step.argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(step.cwd) if step.cwd is not None else None,
            env=env,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        pumps = [
            threading.Thread(
                target=_pump,
                args=(process.stdout, self.stdout, stdout_lines),
                name="uptimer-stdout-pump",
                daemon=True,
            ),
            threading.Thread(
                target=_pump,
                args=(process.stderr, self.stderr, stderr_lines),
                name="uptimer-stderr-pump",
                daemon=True,
            ),
        ]
        for pump in pumps:
            pump.start()

        interruption = _wait(process, timeout, cancel)
        if interruption is not None:
            process.kill()
            process.wait()
        # Grandchildren may keep a pipe open after the child is gone.
        for pump in pumps:
            pump.join(PUMP_JOIN_SECONDS)
        for pipe in (process.stdout, process.stderr):
            if pipe is not None:
                pipe.close()
        elapsed = time.monotonic() - start

        returncode = process.returncode
        if interruption is not None:
            status = interruption
        elif returncode == 0:
            status = CommandStatus.SUCCESS
        elif returncode is not None and returncode < 0:
            status = CommandStatus.SIGNALED
        else:
            status = CommandStatus.FAILURE
        return CommandResult(
            command=step,
            status=status,
            returncode=returncode,
            stdout="".join(stdout_lines),
            stderr="".join(stderr_lines),
            elapsed=elapsed,
        )


def _pump(source: IO[str] | None, sink: TextIO, captured: list[str]) -> None:
    if source is None:
        return
    try:
        for line in iter(source.readline, ""):
            captured.append(line)
            sink.write(line)
            sink.flush()
    except (OSError, ValueError):
        # The pipe was closed underneath us after the join deadline.
        return


def _wait(
    process: subprocess.Popen[str],
    timeout: float | None,
    cancel: threading.Event | None,
) -> CommandStatus | None:
    """Wait for *process*; return the status that interrupted it, if any."""
    if cancel is None:
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return CommandStatus.TIMED_OUT
        return None
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        wait_for = CANCEL_POLL_SECONDS
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return CommandStatus.TIMED_OUT
            wait_for = min(wait_for, remaining)
        try:
            process.wait(timeout=wait_for)
        except subprocess.TimeoutExpired:
            if cancel.is_set():
                return CommandStatus.CANCELLED
            continue
        return None


def _failure_message(result: CommandResult) -> str:
    if result.status is CommandStatus.TIMED_OUT:
        return f"timed out after {result.elapsed:.1f}s"
    if result.status is CommandStatus.CANCELLED:
        return f"cancelled after {result.elapsed:.1f}s"
    if result.status is CommandStatus.SIGNALED and result.returncode is not None:
        return f"terminated by signal {-result.returncode}"
    return f"exited with status {result.returncode}"


def log_execution_failure(
    logger: StructuredLogger,
    what_failed: str,
    exc: Exception,
    executor: CommandExecutor,
) -> None:
    """Log *exc* with the executor's buffered transcript, then reset the buffers."""
    stdout, stderr = executor.drain()
    logger.error(
        f"Failed {what_failed}: {exc}\nstdout:\n{stdout}\nstderr:\n{stderr}\n",
        operation=what_failed,
    )


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "CommandStatus",
    "ExecutionError",
    "log_execution_failure",
]
