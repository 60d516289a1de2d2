"""Typer-powered command line entry point for ``uptimer``.

The command loads the session configuration, prepares the sample apps, runs
the measurement session and exits with a code describing the verdict::

    uptimer -configFile config.yml -resultFile results.json
"""
from __future__ import annotations

import signal
import textwrap
import threading
from collections.abc import Callable
from pathlib import Path
from types import FrameType
from typing import Any

import typer
from rich.console import Console

from . import get_version
from .config import ConfigError, load_config
from .exit_codes import ExitCode
from .logging import StructuredLogger
from .session import build_session

DEFAULT_RESULT_FILE = Path("uptimer-results.json")

console = Console(highlight=False, soft_wrap=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    "-configFile",
    dir_okay=False,
    help="Path to the YAML config file (required).",
)

RESULT_FILE_OPTION = typer.Option(
    None,
    "--result-file",
    "-resultFile",
    dir_okay=False,
    help=f"Path to the JSON result file (defaults to ./{DEFAULT_RESULT_FILE}).",
)

BUILDPACK_DETECTION_OPTION = typer.Option(
    False,
    "--use-buildpack-detection",
    "-useBuildpackDetection",
    help="Let the platform detect buildpacks instead of pinning them in manifests.",
)

VERSION_OPTION = typer.Option(
    False,
    "--version",
    "-v",
    help="Print the version of uptimer and exit.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Measure platform availability while it is being changed.

        uptimer deploys sample apps, then probes HTTP availability, app
        pushability, log fetching, log streaming and (optionally) syslog
        delivery for the session, and fails when any probe exceeds its
        allowed failure count.
        """
    ).strip(),
)


def _install_interrupt_handlers(
    interrupt: threading.Event,
) -> dict[int, Callable[[int, FrameType | None], Any] | int | None]:
    def _handler(signum: int, _frame: FrameType | None) -> None:
        interrupt.set()

    previous: dict[int, Callable[[int, FrameType | None], Any] | int | None] = {}
    if threading.current_thread() is not threading.main_thread():
        return previous
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def _restore_handlers(
    previous: dict[int, Callable[[int, FrameType | None], Any] | int | None],
) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


@app.command()
def main(
    config_file: Path | None = CONFIG_FILE_OPTION,
    result_file: Path | None = RESULT_FILE_OPTION,
    use_buildpack_detection: bool = BUILDPACK_DETECTION_OPTION,
    version: bool = VERSION_OPTION,
) -> None:
    """Run a measurement session."""
    if version:
        console.print(f"version: {get_version()}")
        raise typer.Exit(code=ExitCode.OK)

    try:
        config = load_config(config_file)
    except ConfigError as exc:
        StructuredLogger(console=console).error(f"Failed to load config: {exc}")
        raise typer.Exit(code=ExitCode.CONFIG) from exc

    logger = StructuredLogger(config.logs_dir, console=console)
    result_path = result_file or config.result_file or DEFAULT_RESULT_FILE
    interrupt = threading.Event()

    with logger.operation(
        "session",
        args={"config": config.to_dict(), "use_buildpack_detection": use_buildpack_detection},
        target={"result_file": str(result_path)},
    ) as op:
        try:
            orchestrator, resources = build_session(
                config,
                logger,
                result_path=result_path,
                use_buildpack_detection=use_buildpack_detection,
                interrupt=interrupt,
            )
        except OSError as exc:
            logger.error(f"Failed to prepare session: {exc}")
            op.error("Session preparation failed.", errors=[str(exc)])
            raise typer.Exit(code=ExitCode.SETUP) from exc

        previous = _install_interrupt_handlers(interrupt)
        try:
            exit_code = orchestrator.run()
        finally:
            _restore_handlers(previous)
            resources.cleanup()

        if exit_code == ExitCode.OK:
            op.success("Session passed.", context={"exit_code": exit_code})
        else:
            op.error("Session failed.", context={"exit_code": exit_code})

    raise typer.Exit(code=exit_code)


def run() -> None:
    """Console-script entry point."""
    app()


__all__ = ["app", "main", "run"]
