"""Command sequence producers for the target platform."""
from __future__ import annotations

from .cf import CfWorkflow, IdSource, create_workflow, default_id_source
from .commands import CfCommandGenerator

__all__ = [
    "CfCommandGenerator",
    "CfWorkflow",
    "IdSource",
    "create_workflow",
    "default_id_source",
]
