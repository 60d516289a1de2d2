"""Tests for assembling a session from configuration."""
from __future__ import annotations

import itertools
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from uptimer.clock import FakeClock
from uptimer.config import (
    AllowedFailures,
    AppConfig,
    CfConfig,
    OptionalTests,
    SessionConfig,
    WhileCommand,
)
from uptimer.logging import StructuredLogger
from uptimer.orchestrator import Orchestrator
from uptimer.session import SessionResources, build_session


def _config(
    *,
    syslog: bool = False,
    windows: bool = False,
    while_commands: tuple[WhileCommand, ...] = (),
) -> AppConfig:
    return AppConfig(
        config_file=Path("uptimer.yml"),
        cf=CfConfig(
            api="api.example.com",
            app_domain="apps.example.com",
            admin_user="admin",
            admin_password="hunter2",
            tcp_domain="tcp.example.com",
            available_port=1025,
        ),
        session=SessionConfig(duration=None if while_commands else 60.0),
        while_commands=while_commands,
        allowed_failures=AllowedFailures(http_availability=7),
        optional_tests=OptionalTests(
            run_app_syslog_availability=syslog,
            run_windows_app_pushability=windows,
        ),
        logs_dir=None,
        result_file=None,
    )


def _build(
    config: AppConfig,
    logger: StructuredLogger,
    fake_clock: FakeClock,
) -> tuple[Orchestrator, SessionResources]:
    counter = itertools.count(1)
    return build_session(
        config,
        logger,
        result_path=None,
        clock=fake_clock,
        id_source=lambda: str(next(counter)),
        http_client_factory=lambda: httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(200))
        ),
    )


@pytest.fixture
def built(
    logger: StructuredLogger,
    fake_clock: FakeClock,
) -> Iterator[tuple[Orchestrator, SessionResources]]:
    """Build a session with every optional probe enabled and clean it up afterwards."""
    orchestrator, resources = _build(_config(syslog=True, windows=True), logger, fake_clock)
    yield orchestrator, resources
    resources.cleanup()


def test_default_session_runs_core_probes(
    logger: StructuredLogger,
    fake_clock: FakeClock,
) -> None:
    """Optional probes stay off unless enabled."""
    orchestrator, resources = _build(_config(), logger, fake_clock)
    try:
        names = [scheduler.name for scheduler in orchestrator._schedulers]  # type: ignore[attr-defined]
        assert names == [
            "HTTP availability",
            "App pushability",
            "Recent logs fetching",
            "Streaming logs",
        ]
        http = orchestrator._schedulers[0]  # type: ignore[attr-defined]
        assert http.allowed_failures == 7
        assert http.interval == 1.0
    finally:
        resources.cleanup()


def test_optional_probes_are_added(built: tuple[Orchestrator, SessionResources]) -> None:
    """Windows pushability and syslog probes appear when enabled."""
    orchestrator, _resources = built

    schedulers = {scheduler.name: scheduler for scheduler in orchestrator._schedulers}  # type: ignore[attr-defined]

    assert "Windows app pushability" in schedulers
    assert "App syslog availability" in schedulers
    assert schedulers["App syslog availability"].measure_immediately is False


def test_stage_order(built: tuple[Orchestrator, SessionResources]) -> None:
    """The main workflow is set up last and torn down first."""
    orchestrator, _resources = built

    setup = [stage.description for stage in orchestrator._setup_stages]  # type: ignore[attr-defined]
    teardown = [stage.description for stage in orchestrator._teardown_stages]  # type: ignore[attr-defined]

    assert setup[0].startswith("push workflow")
    assert setup[1].startswith("Windows push workflow")
    assert setup[2].startswith("sink workflow")
    assert setup[3].startswith("main workflow")
    assert teardown == [
        "main workflow",
        "push workflow",
        "Windows push workflow",
        "sink workflow",
    ]


def test_main_setup_binds_syslog_drain(built: tuple[Orchestrator, SessionResources]) -> None:
    """With the syslog probe enabled the main app forwards logs to the sink."""
    orchestrator, _resources = built
    main = orchestrator._setup_stages[-1]  # type: ignore[attr-defined]

    subcommands = [command.args[0] for command in main.commands()]

    assert "push" in subcommands
    assert subcommands[-3:] == ["create-user-provided-service", "bind-service", "restage"]


def test_pushability_uses_fresh_app_names(built: tuple[Orchestrator, SessionResources]) -> None:
    """Each pushability run targets a newly named app."""
    orchestrator, _resources = built
    probe = orchestrator._schedulers[1].probe  # type: ignore[attr-defined]

    first = probe._commands()
    second = probe._commands()

    pushed = [step.args[1] for step in (*first, *second) if step.args[0] == "push"]
    assert len(pushed) == 2
    assert pushed[0] != pushed[1]


def test_while_commands_are_wired(logger: StructuredLogger, fake_clock: FakeClock) -> None:
    """'while' entries become live commands bounding the session."""
    config = _config(while_commands=(WhileCommand("bosh", ("deploy",)),))
    orchestrator, resources = _build(config, logger, fake_clock)
    try:
        (command,) = orchestrator._while_commands  # type: ignore[attr-defined]
        assert command.argv == ["bosh", "deploy"]
    finally:
        resources.cleanup()


def test_cleanup_removes_sample_apps(logger: StructuredLogger, fake_clock: FakeClock) -> None:
    """Temporary app and CLI home directories are removed on cleanup."""
    _orchestrator, resources = _build(_config(syslog=True), logger, fake_clock)
    directories = list(resources.directories)
    assert directories
    assert all(directory.exists() for directory in directories)

    resources.cleanup()

    assert not any(directory.exists() for directory in directories)
    assert resources.http_clients == []


def test_failed_assembly_removes_created_directories(
    logger: StructuredLogger,
    fake_clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Directories made before a failing temp dir are gone when the error surfaces."""
    created: list[Path] = []
    original_mkdtemp = tempfile.mkdtemp

    def flaky_mkdtemp(*args: Any, **kwargs: Any) -> str:
        if len(created) == 2:
            raise OSError("no space left on device")
        path = original_mkdtemp(*args, **kwargs)
        created.append(Path(path))
        return path

    monkeypatch.setattr(tempfile, "mkdtemp", flaky_mkdtemp)

    with pytest.raises(OSError, match="no space left"):
        _build(_config(), logger, fake_clock)

    assert len(created) == 2
    assert not any(path.exists() for path in created)
