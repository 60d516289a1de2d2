"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import io
import os
from pathlib import Path

import pytest
from rich.console import Console

from uptimer.clock import FakeClock
from uptimer.logging import StructuredLogger


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip tests that spawn real processes during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def console_output() -> io.StringIO:
    """Capture everything printed by the logger's console."""
    return io.StringIO()


@pytest.fixture
def logger(tmp_path: Path, console_output: io.StringIO) -> StructuredLogger:
    """Return a logger writing JSON logs under *tmp_path* and console text to memory."""
    console = Console(file=console_output, width=200, highlight=False, soft_wrap=True)
    return StructuredLogger(tmp_path / "logs", console=console)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Return a manually advanced clock."""
    return FakeClock()
