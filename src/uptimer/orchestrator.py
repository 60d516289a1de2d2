"""Session orchestration: setup, concurrent measurement, verdict, teardown."""
from __future__ import annotations

import concurrent.futures
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from rich.console import Console

from . import __version__
from .clock import Clock
from .executor import CommandExecutor, CommandSpec, ExecutionError, log_execution_failure
from .logging import StructuredLogger
from .measurement.results import (
    ProbeVerdict,
    SessionVerdict,
    build_verdict,
    render_summary,
    summary_line,
    write_result_file,
)
from .measurement.scheduler import PeriodicScheduler


class OrchestratorPhase(str, Enum):
    """Lifecycle of a session."""

    SETUP = "setup"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    TEARING_DOWN = "tearing_down"
    DONE = "done"


@dataclass(slots=True, frozen=True)
class WorkflowStage:
    """A named command sequence run during setup or teardown."""

    description: str
    commands: Callable[[], Sequence[CommandSpec]]


class Orchestrator:
    """Drive one measurement session from setup to teardown."""

    def __init__(
        self,
        *,
        clock: Clock,
        logger: StructuredLogger,
        executor: CommandExecutor,
        live_executor: CommandExecutor,
        teardown_executor: CommandExecutor | None = None,
        schedulers: Sequence[PeriodicScheduler],
        setup_stages: Sequence[WorkflowStage],
        teardown_stages: Sequence[WorkflowStage],
        duration: float | None = None,
        while_commands: Sequence[CommandSpec] = (),
        result_path: Path | None = None,
        interrupt: threading.Event | None = None,
        console: Console | None = None,
    ) -> None:
        """Store collaborators.

        ``executor`` runs setup stages and ``teardown_executor`` (a fresh buffered
        executor by default) runs teardown stages; both are owned by the
        orchestrator.
        """
        if duration is None and not while_commands:
            raise ValueError("A session needs a duration or at least one 'while' command.")
        self.phase = OrchestratorPhase.SETUP
        self._clock = clock
        self._logger = logger
        self._executor = executor
        self._live_executor = live_executor
        self._teardown_executor = teardown_executor or CommandExecutor.buffered()
        self._schedulers = tuple(schedulers)
        self._setup_stages = tuple(setup_stages)
        self._teardown_stages = tuple(teardown_stages)
        self._duration = duration
        self._while_commands = tuple(while_commands)
        self._result_path = result_path
        self._interrupt = interrupt or threading.Event()
        self._console = console or logger.console
        self._interrupted = False

    @property
    def interrupt(self) -> threading.Event:
        """Return the event that ends the session early when set."""
        return self._interrupt

    def run(self) -> int:
        """Run the whole session and return the process exit code."""
        self.phase = OrchestratorPhase.SETUP
        try:
            setup_ok = self.setup()
            while_ok = True
            started_at = self._clock.now()
            if setup_ok:
                self.phase = OrchestratorPhase.RUNNING
                while_ok = self.measure()
            else:
                self._logger.error("Setup failed; skipping measurements.")
            ended_at = self._clock.now()
            self.phase = OrchestratorPhase.AGGREGATING
            verdict = self.aggregate(
                setup_succeeded=setup_ok,
                while_succeeded=while_ok,
                metadata={
                    "version": __version__,
                    "started_at": started_at,
                    "ended_at": ended_at,
                    "interrupted": self._interrupted,
                },
            )
        finally:
            self.phase = OrchestratorPhase.TEARING_DOWN
            self.tear_down()
        self.phase = OrchestratorPhase.DONE
        return int(verdict.exit_code)

    def setup(self) -> bool:
        """Attempt every setup stage; return ``False`` when any of them failed."""
        failures: list[str] = []
        with self._logger.operation(
            "setup",
            args={"stages": [stage.description for stage in self._setup_stages]},
        ) as op:
            for stage in self._setup_stages:
                self._logger.info(f"Setting up {stage.description}...")
                try:
                    self._executor.run_sequence(stage.commands())
                except ExecutionError as exc:
                    log_execution_failure(
                        self._logger, f"{stage.description} setup", exc, self._executor
                    )
                    failures.append(f"{stage.description}: {exc}")
                    continue
                self._executor.reset()
                self._logger.info(f"Finished setting up {stage.description}")
            if failures:
                op.error("Setup failed.", errors=failures)
            else:
                op.success("Setup completed.")
        return not failures

    def measure(self) -> bool:
        """Run every scheduler concurrently until the session ends.

        Returns ``False`` only when a 'while' command failed.
        """
        stop = threading.Event()
        with self._logger.operation(
            "measure",
            args={"measurements": [scheduler.name for scheduler in self._schedulers]},
        ) as op:
            workers = max(1, len(self._schedulers))
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=workers,
                thread_name_prefix="uptimer-measurement",
            ) as pool:
                futures = [pool.submit(scheduler.run, stop) for scheduler in self._schedulers]
                try:
                    while_ok = self._wait_for_session_end()
                finally:
                    self._logger.info("Stopping measurements...")
                    stop.set()
                for future in futures:
                    future.result()
            if while_ok:
                op.success("Measurements completed.")
            else:
                op.error("A 'while' command failed during measurements.")
        return while_ok

    def aggregate(
        self,
        *,
        setup_succeeded: bool,
        while_succeeded: bool,
        metadata: dict[str, object] | None = None,
    ) -> SessionVerdict:
        """Build the verdict, print the summary and write the result artifact."""
        entries = []
        if setup_succeeded:
            entries = [
                ProbeVerdict.from_tally(
                    scheduler.name,
                    scheduler.summary_phrase,
                    scheduler.tally,
                    scheduler.allowed_failures,
                )
                for scheduler in self._schedulers
            ]
        verdict = build_verdict(
            entries,
            setup_succeeded=setup_succeeded,
            while_succeeded=while_succeeded,
            metadata=metadata,
        )
        for probe in verdict.probes:
            if probe.within_budget:
                self._logger.info(summary_line(probe))
            else:
                self._logger.error(summary_line(probe))
        self._console.print(render_summary(verdict))

        if self._result_path is not None:
            try:
                write_result_file(self._result_path, verdict)
            except OSError as exc:
                self._logger.error(f"Failed to write result file {self._result_path}: {exc}")
            else:
                self._logger.info(f"Wrote results to {self._result_path}")
        return verdict

    def tear_down(self) -> list[ExecutionError]:
        """Attempt every teardown stage, logging failures without stopping."""
        errors: list[ExecutionError] = []
        self._logger.info("Tearing down...")
        with self._logger.operation(
            "teardown",
            args={"stages": [stage.description for stage in self._teardown_stages]},
        ) as op:
            for stage in self._teardown_stages:
                try:
                    self._teardown_executor.run_sequence(stage.commands())
                except ExecutionError as exc:
                    log_execution_failure(
                        self._logger,
                        f"{stage.description} teardown",
                        exc,
                        self._teardown_executor,
                    )
                    errors.append(exc)
                    continue
                self._teardown_executor.reset()
            if errors:
                op.warning(
                    "Teardown finished with errors.",
                    errors=[str(error) for error in errors],
                )
            else:
                op.success("Teardown completed.")
        self._logger.info("Finished tearing down")
        return errors

    def _wait_for_session_end(self) -> bool:
        if self._while_commands:
            self._logger.info("Running 'while' commands...")
            try:
                self._live_executor.run_sequence(self._while_commands, cancel=self._interrupt)
            except ExecutionError as exc:
                if exc.cancelled:
                    self._interrupted = True
                    self._logger.warning(
                        "Session interrupted; stopped 'while' commands and measurements early."
                    )
                    return True
                self._logger.error(f"'while' command failed: {exc}")
                return False
            self._logger.info("Finished running 'while' commands")
            return True
        duration = self._duration or 0.0
        self._logger.info(f"Measuring for {duration:g} seconds...")
        if self._clock.sleep(duration, self._interrupt):
            self._interrupted = True
            self._logger.warning("Session interrupted; stopping measurements early.")
        return True


__all__ = ["Orchestrator", "OrchestratorPhase", "WorkflowStage"]
