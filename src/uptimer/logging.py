"""Structured logging for uptimer sessions.

Every message is echoed to the terminal through a shared Rich console with the
``[UPTIMER]`` prefix so that long-running sessions can be monitored live. When
a log directory is configured, the same events are appended as JSON lines to
``uptimer.log`` and operation scopes (setup, measurement, teardown...) are
recorded in ``operations.jsonl``.

Probe threads log concurrently, so all writes go through a single lock. File
output disables itself on the first I/O failure instead of interrupting a
measurement session.
"""
from __future__ import annotations

import json
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console

PREFIX = "[UPTIMER]"
EVENTS_LOG_NAME = "uptimer.log"
OPERATIONS_LOG_NAME = "operations.jsonl"

_LEVEL_STYLES: Mapping[str, str | None] = {
    "info": None,
    "warning": "yellow",
    "error": "red",
}


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class StructuredLogger:
    """Thread-safe logger writing to the console and optional JSON logs."""

    def __init__(
        self,
        log_dir: Path | None = None,
        *,
        console: Console | None = None,
    ) -> None:
        """Prepare the console sink and, when possible, the log directory."""
        self._console = console or Console(highlight=False, soft_wrap=True)
        self._lock = threading.Lock()
        self._log_dir = log_dir
        self._enabled = False
        self._events_log_path: Path | None = None
        self._operations_log_path: Path | None = None
        if log_dir is None:
            return
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._console.print(
                f"{PREFIX} Log directory {log_dir} unavailable ({exc}); file logging disabled.",
                style="yellow",
                markup=False,
            )
            return
        self._events_log_path = log_dir / EVENTS_LOG_NAME
        self._operations_log_path = log_dir / OPERATIONS_LOG_NAME
        self._enabled = True

    @property
    def console(self) -> Console:
        """Return the console used for human-readable output."""
        return self._console

    def info(self, message: str, **context: object) -> None:
        """Log an informational message."""
        self._emit("info", message, context)

    def warning(self, message: str, **context: object) -> None:
        """Log a warning."""
        self._emit("warning", message, context)

    def error(self, message: str, **context: object) -> None:
        """Log an error."""
        self._emit("error", message, context)

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Record the outcome of a named operation.

        The scope records an error automatically when the block raises and a
        plain success when the block exits without recording anything.
        """
        scope = OperationScope(self, name, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{name} aborted: {exc!r}")
            raise
        finally:
            if scope.result is None:
                scope.success(f"{name} completed.")
            self._write_record(self._operations_log_path, scope.to_record())

    # ------------------------------------------------------------------
    def _emit(self, level: str, message: str, context: Mapping[str, object]) -> None:
        stamp = datetime.now(UTC).strftime("%Y/%m/%d %H:%M:%S")
        with self._lock:
            self._console.print(
                f"\n{PREFIX} {stamp} {message}",
                style=_LEVEL_STYLES.get(level),
                markup=False,
            )
        record: dict[str, object] = {
            "timestamp": _timestamp(),
            "level": level,
            "message": message,
        }
        if context:
            record["context"] = _sanitize(context)
        self._write_record(self._events_log_path, record)

    def _write_record(self, path: Path | None, record: Mapping[str, object]) -> None:
        if path is None:
            return
        with self._lock:
            if not self._enabled:
                return
            try:
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(record, sort_keys=True))
                    handle.write("\n")
            except OSError:
                self._enabled = False


class OperationScope:
    """Collects the result of a single logged operation."""

    def __init__(
        self,
        logger: StructuredLogger,
        name: str,
        *,
        args: Mapping[str, object] | None,
        target: Mapping[str, object] | None,
    ) -> None:
        """Start timing the operation."""
        self._logger = logger
        self.name = name
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.result: dict[str, object] | None = None
        self._started = time.perf_counter()
        self._started_at = _timestamp()

    def success(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        """Mark the operation successful."""
        self._record("success", message, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._record(
            "warning",
            message,
            warnings=list(warnings),
            errors=list(errors),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._record(
            "error",
            message,
            errors=list(errors) if errors else [message],
            context=context,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe record for this operation."""
        return {
            "timestamp": self._started_at,
            "operation": self.name,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "duration_ms": int((time.perf_counter() - self._started) * 1000),
            "result": self.result,
        }

    def _record(
        self,
        status: str,
        message: str,
        *,
        warnings: list[str] | None = None,
        errors: list[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if warnings:
            result["warnings"] = warnings
        if errors:
            result["errors"] = errors
        if context:
            result["context"] = _sanitize(context)
        self.result = result


__all__ = ["OperationScope", "StructuredLogger"]
