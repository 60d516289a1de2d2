"""Enumerations for process exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes returned by the ``uptimer`` command."""

    OK = 0
    CONFIG = 2
    SETUP = 3
    MEASUREMENT = 4
    WHILE_COMMAND = 5
