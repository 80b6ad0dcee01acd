"""Tests for the task model (task_engine/model.py)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from autodev_engine.errors import InvalidTransition, SerializationError
from autodev_engine.task_engine.model import (
    Task,
    TaskStatus,
    TestRequirement,
    TestRequirements,
    is_valid_task_id,
)

T0 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _task(**kwargs) -> Task:
    base = {"id": "auth.login", "module": "auth", "description": "Login form"}
    base.update(kwargs)
    return Task(**base)


class TestTaskIds:
    @pytest.mark.parametrize("task_id", ["auth", "auth.login", "auth.login-form.v2", "a1.b_2"])
    def test_valid(self, task_id: str) -> None:
        assert is_valid_task_id(task_id)

    @pytest.mark.parametrize("task_id", ["", ".auth", "auth.", "auth..login", "auth login", "-x", None, 3])
    def test_invalid(self, task_id) -> None:
        assert not is_valid_task_id(task_id)


class TestTaskTransitions:
    def test_defaults(self) -> None:
        t = _task()
        assert t.status == TaskStatus.PENDING
        assert t.priority == 1
        assert t.dependencies == []
        assert t.can_start()
        assert t.completion_percentage() == 0

    def test_start_complete(self) -> None:
        t = _task()
        t.start()
        assert t.status == TaskStatus.IN_PROGRESS
        assert t.started_at is not None
        assert t.completion_percentage() == 50
        t.complete()
        assert t.status == TaskStatus.COMPLETED
        assert t.completed_at is not None
        assert t.completed_at >= t.started_at
        assert t.failed_at is None
        assert t.is_terminal()
        assert t.completion_percentage() == 100

    def test_fail(self) -> None:
        t = _task()
        t.start()
        t.fail()
        assert t.status == TaskStatus.FAILED
        assert t.failed_at is not None
        assert t.completed_at is None
        assert t.is_terminal()

    def test_complete_pending_raises(self) -> None:
        t = _task()
        with pytest.raises(InvalidTransition) as exc_info:
            t.complete()
        msg = str(exc_info.value)
        assert "pending" in msg
        assert "in_progress" in msg
        assert exc_info.value.current == "pending"
        assert exc_info.value.target == "completed"
        assert t.status == TaskStatus.PENDING
        assert t.completed_at is None

    def test_start_twice_raises(self) -> None:
        t = _task()
        t.start()
        with pytest.raises(InvalidTransition):
            t.start()

    def test_fail_pending_raises(self) -> None:
        with pytest.raises(InvalidTransition):
            _task().fail()

    def test_terminal_is_final(self) -> None:
        t = _task()
        t.start()
        t.complete()
        for move in (t.start, t.complete, t.fail):
            with pytest.raises(InvalidTransition):
                move()
        assert t.status == TaskStatus.COMPLETED

    def test_blocked_status_cannot_start(self) -> None:
        t = _task(status="blocked")
        assert t.status == TaskStatus.BLOCKED
        assert not t.can_start()
        with pytest.raises(InvalidTransition):
            t.start()


class TestDependencies:
    def test_no_dependencies_never_blocked(self) -> None:
        assert not _task().is_blocked(set())
        assert not _task().has_dependencies()

    def test_blocked_until_all_completed(self) -> None:
        t = _task(dependencies=["auth.a", "auth.b"])
        assert t.is_blocked({"auth.a"})
        assert t.missing_dependencies({"auth.a"}) == ["auth.b"]
        assert not t.is_blocked(["auth.a", "auth.b", "other"])

    def test_unknown_dependency_blocks(self) -> None:
        t = _task(dependencies=["ghost.task"])
        assert t.is_blocked({"auth.login"})


class TestTimeTracking:
    def test_unfinished_has_no_duration(self) -> None:
        t = _task(started_at=T0)
        assert t.get_actual_duration() is None
        assert _task().get_actual_duration() is None

    def test_duration_rounds_half_up(self) -> None:
        t = _task(
            status="completed",
            started_at=T0,
            completed_at=T0 + timedelta(minutes=25, seconds=30),
        )
        assert t.get_actual_duration() == 26

    def test_duration_rounds_down(self) -> None:
        t = _task(status="failed", started_at=T0, failed_at=T0 + timedelta(minutes=10, seconds=29))
        assert t.get_actual_duration() == 10

    def test_over_estimate(self) -> None:
        t = _task(
            status="completed",
            estimated_minutes=20,
            started_at=T0,
            completed_at=T0 + timedelta(minutes=45),
        )
        assert t.is_over_estimate()
        t.estimated_minutes = 60
        assert not t.is_over_estimate()
        t.estimated_minutes = None
        assert not t.is_over_estimate()

    def test_append_note(self) -> None:
        t = _task()
        t.append_note("first")
        t.append_note("  ")
        t.append_note("second")
        assert t.notes == "first\nsecond"


class TestSerialization:
    def test_round_trip(self) -> None:
        t = _task(
            priority=3,
            status="completed",
            acceptance_criteria=["Form renders", "Errors shown"],
            estimated_minutes=45,
            dependencies=["auth.session"],
            test_requirements=TestRequirements(unit=TestRequirement(pattern="tests/test_login.py")),
            notes="done",
            started_at=T0,
            completed_at=T0 + timedelta(minutes=40),
        )
        data = t.to_dict()
        assert data["status"] == "completed"
        assert data["started_at"] == "2024-01-01T10:00:00+00:00"
        assert data["failed_at"] is None
        assert Task.from_dict(data) == t

    def test_from_dict_accepts_zulu_timestamps(self) -> None:
        t = Task.from_dict(
            {"id": "auth.login", "module": "auth", "status": "in_progress", "started_at": "2024-01-01T10:00:00Z"}
        )
        assert t.started_at == T0

    def test_from_dict_defaults(self) -> None:
        t = Task.from_dict({"id": "core.init", "module": "core"})
        assert t.status == TaskStatus.PENDING
        assert t.priority == 1
        assert t.acceptance_criteria == []
        assert t.test_requirements is None

    @pytest.mark.parametrize(
        "data, match",
        [
            ({"module": "auth"}, "invalid task id"),
            ({"id": "auth.login"}, "module"),
            ({"id": "auth.login", "module": "auth", "status": "done"}, "unknown status"),
            ({"id": "auth.login", "module": "auth", "priority": "high"}, "priority"),
            ({"id": "auth.login", "module": "auth", "dependencies": "auth.x"}, "dependencies"),
            ({"id": "auth.login", "module": "auth", "started_at": "yesterday"}, "started_at"),
        ],
    )
    def test_from_dict_rejects_malformed(self, data, match: str) -> None:
        with pytest.raises(SerializationError, match=match):
            Task.from_dict(data)

    def test_from_dict_rejects_non_mapping(self) -> None:
        with pytest.raises(SerializationError):
            Task.from_dict(["auth.login"])  # type: ignore[arg-type]

    def test_index_entry_projection(self) -> None:
        t = _task(priority=2, estimated_minutes=15, dependencies=["auth.a"])
        entry = t.to_index_entry(file_path="auth/login.yaml")
        assert entry == {
            "status": "pending",
            "priority": 2,
            "module": "auth",
            "description": "Login form",
            "file_path": "auth/login.yaml",
            "dependencies": ["auth.a"],
            "estimated_minutes": 15,
        }
        assert "dependencies" not in _task().to_index_entry()
