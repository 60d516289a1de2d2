"""Tests for the uptimer command line interface."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from uptimer import __version__, cli
from uptimer.config import AppConfig
from uptimer.exit_codes import ExitCode
from uptimer.logging import StructuredLogger
from uptimer.session import SessionResources

runner = CliRunner()

CONFIG = (
    "cf:\n"
    "  api: api.example.com\n"
    "  app_domain: apps.example.com\n"
    "  admin_user: admin\n"
    "  admin_password: hunter2\n"
    "session:\n"
    "  duration: 1\n"
)


class FakeOrchestrator:
    """Stands in for a real session and returns a fixed exit code."""

    def __init__(self, exit_code: int) -> None:
        """Remember the code to return."""
        self.exit_code = exit_code
        self.ran = False

    def run(self) -> int:
        """Pretend to run the session."""
        self.ran = True
        return self.exit_code


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a valid config file."""
    path = tmp_path / "uptimer.yml"
    path.write_text(CONFIG + f"logs_dir: {tmp_path / 'logs'}\n", encoding="utf-8")
    return path


@pytest.fixture
def fake_session(monkeypatch: pytest.MonkeyPatch) -> dict[str, object]:
    """Replace session construction with a recorder."""
    calls: dict[str, object] = {"orchestrator": FakeOrchestrator(ExitCode.OK)}
    resources = SessionResources()
    cleaned: list[bool] = []
    monkeypatch.setattr(resources, "cleanup", lambda: cleaned.append(True))
    calls["cleaned"] = cleaned

    def _build(
        config: AppConfig,
        logger: StructuredLogger,
        **kwargs: object,
    ) -> tuple[FakeOrchestrator, SessionResources]:
        calls["config"] = config
        calls.update(kwargs)
        return calls["orchestrator"], resources  # type: ignore[return-value]

    monkeypatch.setattr(cli, "build_session", _build)
    return calls


@pytest.mark.parametrize("flag", ["--version", "-v"])
def test_version_flag(flag: str) -> None:
    """The version flag prints the version and exits successfully."""
    result = runner.invoke(cli.app, [flag])

    assert result.exit_code == 0
    assert f"version: {__version__}" in result.stdout


def test_missing_config_flag_is_a_config_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without a config file the command refuses to start."""
    monkeypatch.delenv("UPTIMER_CONFIG_FILE", raising=False)

    result = runner.invoke(cli.app, [])

    assert result.exit_code == ExitCode.CONFIG
    assert "-configFile" in result.stdout


def test_invalid_config_is_a_config_error(tmp_path: Path) -> None:
    """A config missing required credentials exits with the config code."""
    path = tmp_path / "bad.yml"
    path.write_text("cf:\n  api: api.example.com\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["-configFile", str(path)])

    assert result.exit_code == ExitCode.CONFIG
    assert "Failed to load config" in result.stdout


def test_successful_session_exits_zero(
    config_file: Path,
    fake_session: dict[str, object],
    tmp_path: Path,
) -> None:
    """A passing session exits zero and cleans up its resources."""
    result_file = tmp_path / "out.json"

    result = runner.invoke(
        cli.app,
        ["-configFile", str(config_file), "-resultFile", str(result_file), "-useBuildpackDetection"],
    )

    assert result.exit_code == ExitCode.OK
    orchestrator = fake_session["orchestrator"]
    assert isinstance(orchestrator, FakeOrchestrator)
    assert orchestrator.ran is True
    assert fake_session["result_path"] == result_file
    assert fake_session["use_buildpack_detection"] is True
    assert fake_session["cleaned"] == [True]


def test_long_option_names_are_accepted(
    config_file: Path,
    fake_session: dict[str, object],
) -> None:
    """Double-dash spellings work alongside the single-dash ones."""
    result = runner.invoke(cli.app, ["--config-file", str(config_file)])

    assert result.exit_code == ExitCode.OK
    assert fake_session["use_buildpack_detection"] is False


def test_result_file_defaults(
    config_file: Path,
    fake_session: dict[str, object],
) -> None:
    """Without a flag or config entry the default artifact path is used."""
    runner.invoke(cli.app, ["-configFile", str(config_file)])

    assert fake_session["result_path"] == cli.DEFAULT_RESULT_FILE


def test_result_file_from_config(
    tmp_path: Path,
    fake_session: dict[str, object],
) -> None:
    """The config file can choose the artifact path."""
    path = tmp_path / "uptimer.yml"
    path.write_text(CONFIG + f"result_file: {tmp_path / 'cfg.json'}\n", encoding="utf-8")

    runner.invoke(cli.app, ["-configFile", str(path)])

    assert fake_session["result_path"] == tmp_path / "cfg.json"


def test_failed_session_propagates_exit_code(
    config_file: Path,
    fake_session: dict[str, object],
    tmp_path: Path,
) -> None:
    """The orchestrator's exit code becomes the process exit code."""
    fake_session["orchestrator"] = FakeOrchestrator(ExitCode.MEASUREMENT)

    result = runner.invoke(cli.app, ["-configFile", str(config_file)])

    assert result.exit_code == ExitCode.MEASUREMENT
    assert fake_session["cleaned"] == [True]
    records = [
        json.loads(line)
        for line in (tmp_path / "logs" / "operations.jsonl").read_text().splitlines()
    ]
    session = [record for record in records if record["operation"] == "session"][-1]
    assert session["result"]["status"] == "error"
    assert session["result"]["context"] == {"exit_code": int(ExitCode.MEASUREMENT)}


def test_preparation_failure_is_a_setup_error(
    config_file: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Failing to write the sample apps exits with the setup code."""

    def _broken(*_args: object, **_kwargs: object) -> None:
        raise OSError("No space left on device")

    monkeypatch.setattr(cli, "build_session", _broken)

    result = runner.invoke(cli.app, ["-configFile", str(config_file)])

    assert result.exit_code == ExitCode.SETUP
    assert "No space left on device" in result.stdout
