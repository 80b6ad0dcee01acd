"""Task model for the workflow engine.

A task is a single unit of work produced by the breakdown phase. Its status
only moves forward::

    pending -> in_progress -> completed
                           -> failed

``blocked`` is a status an external collaborator may record; the engine
itself never enters or leaves it.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from ..errors import InvalidTransition, SerializationError
from ..utils import _now, _parse_iso, _to_iso


TASK_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*(\.[A-Za-z0-9][A-Za-z0-9_-]*)*$")


def is_valid_task_id(task_id: Any) -> bool:
    """True if *task_id* is a dotted hierarchical id such as ``auth.login``."""
    return isinstance(task_id, str) and bool(TASK_ID_RE.match(task_id))


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})

_COMPLETION_PERCENT = {
    TaskStatus.PENDING: 0,
    TaskStatus.IN_PROGRESS: 50,
    TaskStatus.COMPLETED: 100,
    TaskStatus.FAILED: 0,
    TaskStatus.BLOCKED: 0,
}


@dataclass
class TestRequirement:
    """One kind of test a task must ship with."""

    __test__ = False  # not a pytest class

    required: bool = True
    pattern: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"required": self.required, "pattern": self.pattern}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TestRequirement":
        return cls(required=bool(data.get("required", True)), pattern=str(data.get("pattern", "") or ""))


@dataclass
class TestRequirements:
    __test__ = False

    unit: Optional[TestRequirement] = None
    e2e: Optional[TestRequirement] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.unit is not None:
            data["unit"] = self.unit.to_dict()
        if self.e2e is not None:
            data["e2e"] = self.e2e.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TestRequirements":
        unit = data.get("unit")
        e2e = data.get("e2e")
        return cls(
            unit=TestRequirement.from_dict(unit) if isinstance(unit, dict) else None,
            e2e=TestRequirement.from_dict(e2e) if isinstance(e2e, dict) else None,
        )


@dataclass
class Task:
    """A work item with acceptance criteria, a priority and dependencies.

    Lower ``priority`` numbers are more urgent. Timestamps are timezone-aware
    UTC datetimes; at most one of ``completed_at``/``failed_at`` is ever set,
    and only after ``started_at``.
    """

    id: str
    module: str
    description: str = ""
    priority: int = 1
    status: TaskStatus = TaskStatus.PENDING
    acceptance_criteria: list[str] = field(default_factory=list)
    estimated_minutes: Optional[int] = None
    dependencies: list[str] = field(default_factory=list)
    test_requirements: Optional[TestRequirements] = None
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.status, TaskStatus):
            self.status = TaskStatus(str(self.status))

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def can_start(self) -> bool:
        return self.status == TaskStatus.PENDING

    def start(self) -> None:
        """Move ``pending -> in_progress`` and stamp ``started_at``."""
        self._require(TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        self.status = TaskStatus.IN_PROGRESS
        self.started_at = _now()

    def complete(self) -> None:
        """Move ``in_progress -> completed`` and stamp ``completed_at``."""
        self._require(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
        self.status = TaskStatus.COMPLETED
        self.completed_at = _now()

    def fail(self) -> None:
        """Move ``in_progress -> failed`` and stamp ``failed_at``."""
        self._require(TaskStatus.IN_PROGRESS, TaskStatus.FAILED)
        self.status = TaskStatus.FAILED
        self.failed_at = _now()

    def _require(self, source: TaskStatus, target: TaskStatus) -> None:
        if self.status != source:
            raise InvalidTransition(
                "task",
                self.status.value,
                target.value,
                [source.value],
                message=(
                    f"Cannot move task {self.id} to {target.value}: current status is "
                    f"{self.status.value}, required status is {source.value}"
                ),
            )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def has_dependencies(self) -> bool:
        return bool(self.dependencies)

    def is_blocked(self, completed_ids: Iterable[str]) -> bool:
        """True if any dependency is missing from *completed_ids*.

        A dependency that names a task that does not exist can never complete,
        so it blocks forever.
        """
        done = completed_ids if isinstance(completed_ids, (set, frozenset)) else set(completed_ids)
        return any(dep not in done for dep in self.dependencies)

    def missing_dependencies(self, completed_ids: Iterable[str]) -> list[str]:
        done = set(completed_ids)
        return [dep for dep in self.dependencies if dep not in done]

    # ------------------------------------------------------------------
    # Time tracking
    # ------------------------------------------------------------------

    def get_actual_duration(self) -> Optional[int]:
        """Minutes from start to completion/failure, rounded half up; None if unfinished."""
        if self.started_at is None:
            return None
        end = self.completed_at or self.failed_at
        if end is None:
            return None
        minutes = (end - self.started_at).total_seconds() / 60
        return math.floor(minutes + 0.5)

    def is_over_estimate(self) -> bool:
        actual = self.get_actual_duration()
        if not actual or not self.estimated_minutes:
            return False
        return actual > self.estimated_minutes

    def completion_percentage(self) -> int:
        return _COMPLETION_PERCENT[self.status]

    def append_note(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        self.notes = f"{self.notes.rstrip()}\n{text}" if self.notes else text

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        return {
            "id": self.id,
            "module": self.module,
            "priority": self.priority,
            "status": self.status.value,
            "description": self.description,
            "acceptance_criteria": list(self.acceptance_criteria),
            "estimated_minutes": self.estimated_minutes,
            "dependencies": list(self.dependencies),
            "test_requirements": self.test_requirements.to_dict() if self.test_requirements else None,
            "notes": self.notes,
            "started_at": _to_iso(self.started_at),
            "completed_at": _to_iso(self.completed_at),
            "failed_at": _to_iso(self.failed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize a persisted task.

        Raises:
            SerializationError: If required fields are missing or malformed.
        """
        if not isinstance(data, dict):
            raise SerializationError(f"task record must be a mapping, got {type(data).__name__}")
        task_id = data.get("id")
        if not is_valid_task_id(task_id):
            raise SerializationError(f"invalid task id: {task_id!r}")
        module = data.get("module")
        if not isinstance(module, str) or not module:
            raise SerializationError(f"task {task_id}: 'module' is required")
        try:
            status = TaskStatus(str(data.get("status", TaskStatus.PENDING.value)))
        except ValueError as exc:
            raise SerializationError(f"task {task_id}: unknown status {data.get('status')!r}") from exc
        priority = data.get("priority", 1)
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise SerializationError(f"task {task_id}: 'priority' must be an integer")

        estimate = data.get("estimated_minutes")
        if estimate is not None and (isinstance(estimate, bool) or not isinstance(estimate, int)):
            raise SerializationError(f"task {task_id}: 'estimated_minutes' must be an integer")

        for list_field in ("acceptance_criteria", "dependencies"):
            val = data.get(list_field)
            if val is not None and not isinstance(val, list):
                raise SerializationError(f"task {task_id}: '{list_field}' must be a list")

        test_reqs = data.get("test_requirements")
        notes = data.get("notes")
        return cls(
            id=task_id,
            module=module,
            description=str(data.get("description", "") or ""),
            priority=priority,
            status=status,
            acceptance_criteria=[str(c) for c in data.get("acceptance_criteria") or []],
            estimated_minutes=estimate,
            dependencies=[str(d) for d in data.get("dependencies") or []],
            test_requirements=TestRequirements.from_dict(test_reqs) if isinstance(test_reqs, dict) else None,
            notes=str(notes) if notes is not None else None,
            started_at=_timestamp(data, "started_at", task_id),
            completed_at=_timestamp(data, "completed_at", task_id),
            failed_at=_timestamp(data, "failed_at", task_id),
        )

    def to_index_entry(self, file_path: Optional[str] = None) -> dict[str, Any]:
        """Project onto the lightweight fields mirrored in the task index."""
        entry: dict[str, Any] = {
            "status": self.status.value,
            "priority": self.priority,
            "module": self.module,
            "description": self.description,
        }
        if file_path is not None:
            entry["file_path"] = file_path
        if self.dependencies:
            entry["dependencies"] = list(self.dependencies)
        if self.estimated_minutes is not None:
            entry["estimated_minutes"] = self.estimated_minutes
        return entry


def _timestamp(data: dict[str, Any], key: str, task_id: str) -> Optional[datetime]:
    raw = data.get(key)
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return _parse_iso(raw.isoformat())
    parsed = _parse_iso(raw)
    if parsed is None:
        raise SerializationError(f"task {task_id}: '{key}' is not an ISO-8601 timestamp: {raw!r}")
    return parsed
