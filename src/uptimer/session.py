"""Assemble workflows, probes, schedulers and the orchestrator from config."""
from __future__ import annotations

import shutil
import tempfile
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from . import apps
from .clock import Clock, SystemClock
from .config import AppConfig
from .executor import CommandExecutor, CommandSpec
from .logging import StructuredLogger
from .measurement.models import auth_expired, never_retry
from .measurement.probes import (
    DeployabilityProbe,
    HTTPAvailabilityProbe,
    RecentLogsProbe,
    StreamingLogsProbe,
    SyslogDrainProbe,
    build_http_client,
)
from .measurement.scheduler import PeriodicScheduler
from .orchestrator import Orchestrator, WorkflowStage
from .validator import AppLogValidator
from .workflow import CfCommandGenerator, CfWorkflow, IdSource, create_workflow, default_id_source

HTTP_INTERVAL = 1.0
PUSHABILITY_INTERVAL = 60.0
RECENT_LOGS_INTERVAL = 10.0
STREAMING_LOGS_INTERVAL = 30.0
SYSLOG_INTERVAL = 30.0


@dataclass
class SessionResources:
    """Temporary directories and clients owned by the session."""

    directories: list[Path] = field(default_factory=list)
    http_clients: list[httpx.Client] = field(default_factory=list)

    def make_dir(self, prefix: str = "uptimer") -> Path:
        """Create and track a temporary directory."""
        path = Path(tempfile.mkdtemp(prefix=f"{prefix}-"))
        self.directories.append(path)
        return path

    def track(self, path: Path) -> Path:
        """Track an externally created directory for removal."""
        self.directories.append(path)
        return path

    def cleanup(self) -> None:
        """Close clients and remove every tracked directory."""
        for client in self.http_clients:
            client.close()
        for directory in self.directories:
            shutil.rmtree(directory, ignore_errors=True)
        self.http_clients.clear()
        self.directories.clear()


def _push_and_delete(
    base: CfWorkflow,
    gen: CfCommandGenerator,
    id_source: IdSource,
) -> Callable[[], list[CommandSpec]]:
    def _commands() -> list[CommandSpec]:
        workflow = base.with_app_name(f"uptimer-app-{id_source()}")
        return [*workflow.push(gen), *workflow.delete(gen)]

    return _commands


def build_session(
    config: AppConfig,
    logger: StructuredLogger,
    *,
    result_path: Path | None,
    use_buildpack_detection: bool = False,
    clock: Clock | None = None,
    id_source: IdSource = default_id_source,
    interrupt: threading.Event | None = None,
    http_client_factory: Callable[[], httpx.Client] = build_http_client,
) -> tuple[Orchestrator, SessionResources]:
    """Build the orchestrator for *config*.

    Sample apps and CLI homes are written to temporary directories tracked by
    the returned :class:`SessionResources`; callers must ``cleanup()`` them.
    Anything created before a failure is removed before the error propagates.
    """
    resources = SessionResources()
    try:
        orchestrator = _assemble(
            config,
            logger,
            resources,
            result_path=result_path,
            use_buildpack_detection=use_buildpack_detection,
            clock=clock or SystemClock(),
            id_source=id_source,
            interrupt=interrupt,
            http_client_factory=http_client_factory,
        )
    except BaseException:
        resources.cleanup()
        raise
    return orchestrator, resources


def _assemble(
    config: AppConfig,
    logger: StructuredLogger,
    resources: SessionResources,
    *,
    result_path: Path | None,
    use_buildpack_detection: bool,
    clock: Clock,
    id_source: IdSource,
    interrupt: threading.Event | None,
    http_client_factory: Callable[[], httpx.Client],
) -> Orchestrator:
    cf = config.cf
    optional = config.optional_tests
    budgets = config.allowed_failures

    logger.info("Preparing included apps...")
    app_path = resources.track(apps.prepare_app(use_buildpack_detection=use_buildpack_detection))
    win_app_path = None
    if optional.run_windows_app_pushability:
        win_app_path = resources.track(
            apps.prepare_windows_app(use_buildpack_detection=use_buildpack_detection)
        )
    sink_app_path = None
    if optional.run_app_syslog_availability:
        sink_app_path = resources.track(
            apps.prepare_syslog_sink(use_buildpack_detection=use_buildpack_detection)
        )
    logger.info("Finished preparing included apps")

    orc_gen = CfCommandGenerator(resources.make_dir())
    push_gen = CfCommandGenerator(resources.make_dir())
    recent_logs_gen = CfCommandGenerator(resources.make_dir())
    streaming_logs_gen = CfCommandGenerator(resources.make_dir())

    orc_workflow = create_workflow(cf, app_path, id_source)
    push_workflow = create_workflow(cf, app_path, id_source)

    setup_stages: list[WorkflowStage] = [
        WorkflowStage(
            f"push workflow (org {push_workflow.org})",
            lambda: push_workflow.setup(push_gen),
        ),
    ]
    teardown_stages: list[WorkflowStage] = []

    http_client = http_client_factory()
    resources.http_clients.append(http_client)
    schedulers: list[PeriodicScheduler] = [
        PeriodicScheduler(
            HTTPAvailabilityProbe(orc_workflow.app_url, http_client),
            interval=HTTP_INTERVAL,
            clock=clock,
            logger=logger,
            allowed_failures=budgets.http_availability,
            should_retry=never_retry,
        ),
        PeriodicScheduler(
            DeployabilityProbe(
                _push_and_delete(push_workflow, push_gen, id_source),
                CommandExecutor.buffered(),
            ),
            interval=PUSHABILITY_INTERVAL,
            clock=clock,
            logger=logger,
            allowed_failures=budgets.app_pushability,
            should_retry=auth_expired,
        ),
        PeriodicScheduler(
            RecentLogsProbe(
                lambda: orc_workflow.recent_logs(recent_logs_gen),
                CommandExecutor.buffered(),
                AppLogValidator(),
            ),
            interval=RECENT_LOGS_INTERVAL,
            clock=clock,
            logger=logger,
            allowed_failures=budgets.recent_logs,
            should_retry=auth_expired,
        ),
        PeriodicScheduler(
            StreamingLogsProbe(
                lambda: orc_workflow.stream_logs(streaming_logs_gen),
                CommandExecutor.buffered(),
                AppLogValidator(),
                timeout=config.session.streaming_timeout,
            ),
            interval=STREAMING_LOGS_INTERVAL,
            clock=clock,
            logger=logger,
            allowed_failures=budgets.streaming_logs,
            should_retry=auth_expired,
        ),
    ]

    win_push_workflow: CfWorkflow | None = None
    win_push_gen: CfCommandGenerator | None = None
    if win_app_path is not None:
        win_push_gen = CfCommandGenerator(resources.make_dir())
        win_push_workflow = create_workflow(cf, win_app_path, id_source)
        setup_stages.append(
            WorkflowStage(
                f"Windows push workflow (org {win_push_workflow.org})",
                lambda: win_push_workflow.setup(win_push_gen),
            )
        )
        schedulers.append(
            PeriodicScheduler(
                DeployabilityProbe(
                    _push_and_delete(win_push_workflow, win_push_gen, id_source),
                    CommandExecutor.buffered(),
                    name="Windows app pushability",
                ),
                interval=PUSHABILITY_INTERVAL,
                clock=clock,
                logger=logger,
                allowed_failures=budgets.app_pushability,
                should_retry=auth_expired,
            )
        )
    else:
        logger.info("*NOT* running measurement: Windows app pushability")

    sink_workflow: CfWorkflow | None = None
    sink_gen: CfCommandGenerator | None = None
    if sink_app_path is not None:
        sink_gen = CfCommandGenerator(resources.make_dir())
        sink_workflow = create_workflow(cf, sink_app_path, id_source)
        setup_stages.append(
            WorkflowStage(
                f"sink workflow (org {sink_workflow.org})",
                lambda: [
                    *sink_workflow.setup(sink_gen),
                    *sink_workflow.push(sink_gen),
                    *sink_workflow.map_route(sink_gen),
                ],
            )
        )
        schedulers.append(
            PeriodicScheduler(
                SyslogDrainProbe(
                    lambda: sink_workflow.recent_logs(sink_gen),
                    CommandExecutor.buffered(),
                    AppLogValidator(),
                ),
                interval=SYSLOG_INTERVAL,
                clock=clock,
                logger=logger,
                allowed_failures=budgets.app_syslog_availability,
                should_retry=auth_expired,
                measure_immediately=False,
            )
        )
    else:
        logger.info("*NOT* running measurement: App syslog availability")

    def _main_setup() -> list[CommandSpec]:
        commands = [*orc_workflow.setup(orc_gen), *orc_workflow.push(orc_gen)]
        if sink_workflow is not None:
            commands.extend(
                orc_workflow.create_and_bind_syslog_drain(orc_gen, sink_workflow.syslog_url)
            )
        return commands

    setup_stages.append(WorkflowStage(f"main workflow (org {orc_workflow.org})", _main_setup))

    teardown_stages.append(
        WorkflowStage("main workflow", lambda: orc_workflow.tear_down(orc_gen))
    )
    teardown_stages.append(
        WorkflowStage("push workflow", lambda: push_workflow.tear_down(push_gen))
    )
    if win_push_workflow is not None and win_push_gen is not None:
        teardown_stages.append(
            WorkflowStage(
                "Windows push workflow",
                lambda: win_push_workflow.tear_down(win_push_gen),
            )
        )
    if sink_workflow is not None and sink_gen is not None:
        teardown_stages.append(
            WorkflowStage("sink workflow", lambda: sink_workflow.tear_down(sink_gen))
        )

    while_commands = [
        CommandSpec(program=command.command, args=command.command_args)
        for command in config.while_commands
    ]

    return Orchestrator(
        clock=clock,
        logger=logger,
        executor=CommandExecutor.buffered(),
        live_executor=CommandExecutor.live(),
        teardown_executor=CommandExecutor.buffered(),
        schedulers=schedulers,
        setup_stages=setup_stages,
        teardown_stages=teardown_stages,
        duration=config.session.duration,
        while_commands=while_commands,
        result_path=result_path,
        interrupt=interrupt,
    )


__all__ = ["SessionResources", "build_session"]
