"""Tests for the YAML task store (task_engine/store.py)."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import yaml

from autodev_engine.errors import NotFound, SerializationError
from autodev_engine.io_utils import FileSystem
from autodev_engine.task_engine.index import IndexRepository
from autodev_engine.task_engine.model import Task, TaskStatus
from autodev_engine.task_engine.store import TaskStore


@pytest.fixture
def store(fs: FileSystem, state_dir: Path) -> TaskStore:
    return TaskStore(fs, IndexRepository(fs, state_dir / "tasks"))


class TestTaskStore:
    def test_get_missing(self, store: TaskStore) -> None:
        assert asyncio.run(store.get("auth.login")) is None
        with pytest.raises(NotFound):
            asyncio.run(store.require("auth.login"))

    def test_save_writes_document_and_index(self, store: TaskStore) -> None:
        task = Task(id="auth.login", module="auth", description="Login", priority=2, dependencies=["auth.session"])
        path = asyncio.run(store.save(task))
        assert path == store.tasks_dir / "auth" / "login.yaml"

        doc = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert doc["id"] == "auth.login"
        assert doc["status"] == "pending"
        assert doc["dependencies"] == ["auth.session"]

        entry = asyncio.run(store.index.get_entry("auth.login"))
        assert entry.file_path == "auth/login.yaml"
        assert entry.priority == 2
        assert entry.dependencies == ["auth.session"]

    def test_round_trip_through_disk(self, store: TaskStore) -> None:
        task = Task(id="auth.login", module="auth", description="Login", acceptance_criteria=["renders"])
        task.start()

        async def scenario():
            await store.save(task)
            return await store.get("auth.login")

        loaded = asyncio.run(scenario())
        assert loaded == task

    def test_save_keeps_existing_file_path(self, store: TaskStore) -> None:
        async def scenario():
            await store.index.upsert_entry(
                "auth.login",
                {"status": "pending", "priority": 1, "module": "auth", "file_path": "legacy/login.yaml"},
            )
            return await store.save(Task(id="auth.login", module="auth"))

        path = asyncio.run(scenario())
        assert path == store.tasks_dir / "legacy" / "login.yaml"

    def test_status_change_mirrors_into_index(self, store: TaskStore) -> None:
        task = Task(id="auth.login", module="auth")

        async def scenario():
            await store.save(task)
            task.start()
            await store.save(task)
            return await store.index.query_by_status(TaskStatus.IN_PROGRESS)

        assert asyncio.run(scenario()) == ["auth.login"]

    def test_find_filters(self, store: TaskStore) -> None:
        async def scenario():
            await store.save(Task(id="auth.a", module="auth"))
            done = Task(id="auth.b", module="auth")
            done.start()
            done.complete()
            await store.save(done)
            await store.save(Task(id="ui.c", module="ui"))
            return (
                [t.id for t in await store.find()],
                [t.id for t in await store.find(status="pending")],
                [t.id for t in await store.find(module="ui")],
            )

        everything, pending, ui = asyncio.run(scenario())
        assert everything == ["auth.a", "auth.b", "ui.c"]
        assert pending == ["auth.a", "ui.c"]
        assert ui == ["ui.c"]

    def test_find_skips_missing_documents(self, store: TaskStore) -> None:
        async def scenario():
            path = await store.save(Task(id="auth.a", module="auth"))
            await store.save(Task(id="auth.b", module="auth"))
            path.unlink()
            return [t.id for t in await store.find()]

        assert asyncio.run(scenario()) == ["auth.b"]

    def test_delete(self, store: TaskStore) -> None:
        async def scenario():
            path = await store.save(Task(id="auth.a", module="auth"))
            await store.delete("auth.a")
            return path

        path = asyncio.run(scenario())
        assert not path.exists()
        assert asyncio.run(store.index.has_entry("auth.a")) is False
        with pytest.raises(NotFound):
            asyncio.run(store.delete("auth.a"))

    def test_corrupt_document_raises(self, store: TaskStore) -> None:
        path = asyncio.run(store.save(Task(id="auth.a", module="auth")))
        path.write_text("id: auth.a\nstatus: [oops\n", encoding="utf-8")
        with pytest.raises(SerializationError, match="a.yaml"):
            asyncio.run(store.get("auth.a"))

    def test_invalid_record_names_file(self, store: TaskStore) -> None:
        path = asyncio.run(store.save(Task(id="auth.a", module="auth")))
        path.write_text("id: auth.a\nmodule: auth\nstatus: finished\n", encoding="utf-8")
        with pytest.raises(SerializationError, match="a.yaml.*unknown status"):
            asyncio.run(store.get("auth.a"))
