"""Session state: the phase state machine for one autonomous workflow run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..errors import InvalidTransition, SerializationError
from ..utils import _monotonic_after, _now, _parse_iso, _to_iso


class Phase(str, Enum):
    """Workflow phases, in their nominal order."""

    CLARIFY = "clarify"
    BREAKDOWN = "breakdown"
    IMPLEMENT = "implement"
    HEAL = "heal"
    DELIVER = "deliver"
    COMPLETE = "complete"


_VALID_TRANSITIONS: dict[Phase, tuple[Phase, ...]] = {
    Phase.CLARIFY: (Phase.BREAKDOWN,),
    Phase.BREAKDOWN: (Phase.IMPLEMENT,),
    Phase.IMPLEMENT: (Phase.HEAL, Phase.DELIVER),
    Phase.HEAL: (Phase.IMPLEMENT, Phase.DELIVER),
    Phase.DELIVER: (Phase.COMPLETE,),
    Phase.COMPLETE: (),  # terminal
}


def allowed_transitions(phase: Phase) -> tuple[Phase, ...]:
    return _VALID_TRANSITIONS[Phase(phase)]


@dataclass
class SessionState:
    """Current phase, current task and collaborator-owned payloads of a session.

    ``requirements`` and ``errors`` are opaque to the engine: they are stored
    and returned as given. Every mutation moves ``updated_at`` strictly
    forward; ``started_at`` never changes.
    """

    phase: Phase
    started_at: datetime
    updated_at: datetime
    current_task: Optional[str] = None
    requirements: Any = None
    _errors: list[Any] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.phase, Phase):
            self.phase = Phase(str(self.phase))

    @classmethod
    def create_new(cls, phase: Phase = Phase.CLARIFY) -> "SessionState":
        now = _now()
        return cls(phase=Phase(phase), started_at=now, updated_at=now)

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def next_allowed_phases(self) -> list[Phase]:
        return list(_VALID_TRANSITIONS[self.phase])

    def can_transition_to(self, target: Phase) -> bool:
        try:
            target = Phase(target)
        except ValueError:
            return False
        if target == self.phase:
            return True
        return target in _VALID_TRANSITIONS[self.phase]

    def transition_to(self, target: Phase) -> None:
        """Move to *target*; staying in the current phase is a no-op move.

        Raises:
            InvalidTransition: If the table does not allow ``phase -> target``.
        """
        if not self.can_transition_to(target):
            allowed = [p.value for p in _VALID_TRANSITIONS[self.phase]]
            raise InvalidTransition(
                "phase",
                self.phase.value,
                getattr(target, "value", str(target)),
                allowed,
            )
        self.phase = Phase(target)
        self._touch()

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------

    @property
    def errors(self) -> list[Any]:
        return list(self._errors)

    def set_current_task(self, task_id: Optional[str]) -> None:
        self.current_task = task_id
        self._touch()

    def set_requirements(self, requirements: Any) -> None:
        self.requirements = requirements
        self._touch()

    def add_error(self, error: Any) -> None:
        self._errors.append(error)
        self._touch()

    def clear_errors(self) -> None:
        self._errors = []
        self._touch()

    def is_complete(self) -> bool:
        return self.phase == Phase.COMPLETE

    def _touch(self) -> None:
        self.updated_at = _monotonic_after(self.updated_at)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted session record (camelCase keys)."""
        data: dict[str, Any] = {"phase": self.phase.value}
        if self.current_task is not None:
            data["currentTask"] = self.current_task
        if self.requirements is not None:
            data["prd"] = self.requirements
        data["errors"] = list(self._errors)
        data["startedAt"] = _to_iso(self.started_at)
        data["updatedAt"] = _to_iso(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionState":
        """Rebuild a session from its persisted record.

        Raises:
            SerializationError: On an unknown phase or unparsable timestamps.
        """
        if not isinstance(data, dict):
            raise SerializationError(f"session record must be an object, got {type(data).__name__}")
        try:
            phase = Phase(str(data.get("phase")))
        except ValueError as exc:
            raise SerializationError(f"unknown phase {data.get('phase')!r}") from exc
        started_at = _parse_iso(data.get("startedAt"))
        if started_at is None:
            raise SerializationError("'startedAt' is missing or not an ISO-8601 timestamp")
        updated_at = _parse_iso(data.get("updatedAt")) or started_at
        errors = data.get("errors") or []
        if not isinstance(errors, list):
            raise SerializationError("'errors' must be a list")
        current = data.get("currentTask")
        return cls(
            phase=phase,
            started_at=started_at,
            updated_at=updated_at,
            current_task=str(current) if current else None,
            requirements=data.get("prd"),
            _errors=list(errors),
        )
