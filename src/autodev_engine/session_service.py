"""Session-level operations: initialize, advance phases, archive."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .constants import (
    ARCHIVE_DIR_NAME,
    PROGRESS_LOG_FILE,
    STATE_FILE,
    TASKS_DIR_NAME,
)
from .errors import NotFound
from .io_utils import FileSystem
from .task_engine.session import Phase, SessionState
from .task_engine.state_store import StateStore
from .utils import _now

# Archived in this order when present.
ARCHIVED_ENTRIES = (STATE_FILE, "prd.md", TASKS_DIR_NAME, PROGRESS_LOG_FILE, "debug.log")


@dataclass
class ArchiveResult:
    archived: bool
    archive_path: Optional[Path] = None
    files: list[str] = field(default_factory=list)
    blocked: bool = False
    blocked_reason: Optional[str] = None
    current_phase: Optional[Phase] = None


class SessionService:
    """Workflow-state operations for one workspace's ``.autodev`` directory."""

    def __init__(self, state_store: StateStore, fs: FileSystem, state_dir: Path) -> None:
        self.state_store = state_store
        self._fs = fs
        self.state_dir = state_dir

    async def get(self) -> Optional[SessionState]:
        return await self.state_store.get()

    async def require(self) -> SessionState:
        state = await self.state_store.get()
        if state is None:
            raise NotFound("Session state", str(self.state_store.state_path))
        return state

    async def initialize(self, phase: Phase = Phase.CLARIFY) -> SessionState:
        """Create the session in *phase*; an existing session is returned untouched."""
        existing = await self.state_store.get()
        if existing is not None:
            logger.warning("State already exists (phase {}), returning existing state", existing.phase.value)
            return existing
        state = SessionState.create_new(Phase(phase))
        await self.state_store.set(state)
        logger.info("Workflow state initialized in phase {}", state.phase.value)
        return state

    async def transition(self, phase: Phase | str) -> SessionState:
        """Advance to *phase*, enforcing the phase table."""
        state = await self.state_store.update(phase=Phase(phase))
        logger.info("Workflow phase is now {}", state.phase.value)
        return state

    async def set_current_task(self, task_id: Optional[str]) -> SessionState:
        return await self.state_store.update(current_task=task_id)

    async def set_requirements(self, requirements: Any) -> SessionState:
        return await self.state_store.update(requirements=requirements)

    async def record_error(self, error: Any) -> SessionState:
        return await self.state_store.update(add_error=error)

    async def clear_errors(self) -> SessionState:
        state = await self.require()
        state.clear_errors()
        await self.state_store.set(state)
        return state

    async def clear(self) -> None:
        logger.info("Clearing workflow state")
        await self.state_store.clear()

    async def archive(self, *, force: bool = False) -> ArchiveResult:
        """Copy session artifacts to ``archive/<timestamp>/`` and clear them.

        Refuses (``blocked=True``) while the session is not ``complete`` unless
        *force* is set.
        """
        present = [name for name in ARCHIVED_ENTRIES if await self._fs.exists(self.state_dir / name)]
        if not present:
            logger.info("No session data to archive")
            return ArchiveResult(archived=False)

        state = await self.state_store.get()
        if state is not None and not force and not state.is_complete():
            logger.warning("Refusing to archive incomplete session in phase {}", state.phase.value)
            return ArchiveResult(
                archived=False,
                blocked=True,
                blocked_reason=(
                    f'Session is in "{state.phase.value}" phase. '
                    "Use force to archive an incomplete session."
                ),
                current_phase=state.phase,
            )

        archive_dir = await self._new_archive_dir()
        await self._fs.ensure_dir(archive_dir)
        for name in present:
            await self._fs.copy(self.state_dir / name, archive_dir / name)
            logger.debug("Archived {}", name)
        for name in present:
            await self._fs.remove(self.state_dir / name)

        logger.info("Session archived to {} ({})", archive_dir, ", ".join(present))
        return ArchiveResult(archived=True, archive_path=archive_dir, files=present)

    async def _new_archive_dir(self) -> Path:
        """A not-yet-existing ``archive/<timestamp>`` directory path."""
        root = self.state_dir / ARCHIVE_DIR_NAME
        stamp = _now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        candidate = root / stamp
        suffix = 1
        while await self._fs.exists(candidate):
            candidate = root / f"{stamp}-{suffix}"
            suffix += 1
        return candidate
