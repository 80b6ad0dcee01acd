"""Persist the session state record as ``.autodev/state.json``."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from ..errors import NotFound, SerializationError
from ..io_utils import FileSystem, decode_json_object
from .session import Phase, SessionState

_UNSET: Any = object()


class StateStore:
    """Async repository for the single :class:`SessionState` of a workspace."""

    def __init__(self, fs: FileSystem, state_path: Path) -> None:
        self._fs = fs
        self.state_path = state_path

    async def get(self) -> Optional[SessionState]:
        if not await self._fs.exists(self.state_path):
            return None
        text = await self._fs.read_text(self.state_path)
        data = decode_json_object(text, self.state_path)
        try:
            return SessionState.from_dict(data)
        except SerializationError as exc:
            raise SerializationError(str(exc), self.state_path) from exc

    async def set(self, state: SessionState) -> None:
        await self._fs.ensure_dir(self.state_path.parent)
        await self._fs.write_text(self.state_path, json.dumps(state.to_dict(), indent=2) + "\n")

    async def update(
        self,
        *,
        phase: Optional[Phase | str] = None,
        current_task: Any = _UNSET,
        requirements: Any = _UNSET,
        add_error: Any = _UNSET,
    ) -> SessionState:
        """Apply field updates to the stored session and persist it.

        ``current_task=None`` clears the current task. Phase changes go through
        :meth:`SessionState.transition_to`, so the phase table is enforced.

        Raises:
            NotFound: No session state has been stored yet.
            InvalidTransition: *phase* is not reachable from the stored phase.
        """
        state = await self.get()
        if state is None:
            raise NotFound("Session state", str(self.state_path))
        if phase is not None:
            state.transition_to(Phase(phase))
        if current_task is not _UNSET:
            state.set_current_task(current_task)
        if requirements is not _UNSET:
            state.set_requirements(requirements)
        if add_error is not _UNSET:
            state.add_error(add_error)
        await self.set(state)
        return state

    async def clear(self) -> None:
        if await self._fs.exists(self.state_path):
            await self._fs.remove(self.state_path)

    async def exists(self) -> bool:
        return await self._fs.exists(self.state_path)
