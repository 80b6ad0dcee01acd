"""Provide the public `autodev_engine` package exports."""

from __future__ import annotations

from .errors import (
    BatchRolledBack,
    CircuitOpenError,
    EngineError,
    InvalidTransition,
    NotFound,
    SerializationError,
)
from .healing import HealingCoordinator, HealingResult, HealingStats
from .workspace import Workspace, open_workspace

__all__ = [
    "BatchRolledBack",
    "CircuitOpenError",
    "EngineError",
    "HealingCoordinator",
    "HealingResult",
    "HealingStats",
    "InvalidTransition",
    "NotFound",
    "SerializationError",
    "Workspace",
    "open_workspace",
]
