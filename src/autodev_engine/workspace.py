"""Build the per-session object graph for a project directory.

Everything a caller needs is constructed once here and handed around
explicitly; nothing in the engine keeps module-level state.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import get_circuit_breaker_config, get_retry_config, load_engine_config
from .constants import (
    CIRCUIT_BREAKER_LOG_FILE,
    PROGRESS_LOG_FILE,
    STATE_DIR_NAME,
    STATE_FILE,
    TASKS_DIR_NAME,
)
from .healing import HealingCoordinator
from .io_utils import FileSystem
from .resilience.circuit_breaker import CircuitBreakerConfig
from .resilience.retry import RetryConfig
from .session_service import SessionService
from .task_engine.engine import TaskService
from .task_engine.index import IndexRepository
from .task_engine.state_store import StateStore
from .task_engine.store import TaskStore


@dataclass
class Workspace:
    project_dir: Path
    state_dir: Path
    config: dict[str, Any]
    fs: FileSystem
    index: IndexRepository
    store: TaskStore
    state_store: StateStore
    tasks: TaskService
    session: SessionService
    healing: HealingCoordinator


def open_workspace(
    project_dir: Path,
    *,
    retry: Optional[RetryConfig] = None,
    circuit_breaker: Optional[CircuitBreakerConfig] = None,
    fs: Optional[FileSystem] = None,
) -> Workspace:
    """Wire up the engine for *project_dir*.

    Explicit *retry*/*circuit_breaker* settings win over `.autodev/config.yaml`.
    An unreadable config file is reported and defaults are used.
    """
    project_dir = project_dir.resolve()
    state_dir = project_dir / STATE_DIR_NAME
    config, err = load_engine_config(project_dir)
    if err:
        logger.warning("Ignoring invalid engine config: {}", err)

    fs = fs or FileSystem(retry or get_retry_config(config))
    index = IndexRepository(fs, state_dir / TASKS_DIR_NAME)
    store = TaskStore(fs, index)
    state_store = StateStore(fs, state_dir / STATE_FILE)
    tasks = TaskService(
        store,
        state_store=state_store,
        fs=fs,
        progress_log_path=state_dir / PROGRESS_LOG_FILE,
    )
    session = SessionService(state_store, fs, state_dir)
    healing = HealingCoordinator(
        fs,
        state_dir / CIRCUIT_BREAKER_LOG_FILE,
        circuit_breaker or get_circuit_breaker_config(config),
    )
    return Workspace(
        project_dir=project_dir,
        state_dir=state_dir,
        config=config,
        fs=fs,
        index=index,
        store=store,
        state_store=state_store,
        tasks=tasks,
        session=session,
        healing=healing,
    )
