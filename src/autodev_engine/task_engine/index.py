"""Lightweight task index persisted as ``<tasks_dir>/index.json``.

The index mirrors the status, priority, module and dependencies of every
task so status queries never need to open the task documents. Its
:meth:`IndexRepository.get_next_task` is a plain priority scan; dependency
gating is done by :class:`~autodev_engine.task_engine.engine.TaskService`
over the full tasks.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import INDEX_FILE, INDEX_VERSION, TASK_FILE_SUFFIX
from ..errors import NotFound, SerializationError
from ..io_utils import FileSystem, decode_json_object
from ..utils import _monotonic_after, _now
from .model import TaskStatus, is_valid_task_id

NEXT_TASK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


class IndexEntry(BaseModel):
    """Projection of one task into the index."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: TaskStatus
    priority: int
    module: str
    description: str = ""
    file_path: Optional[str] = Field(default=None, alias="filePath")
    dependencies: Optional[list[str]] = None
    estimated_minutes: Optional[int] = Field(default=None, alias="estimatedMinutes")


class IndexMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    project_goal: str = Field(default="", alias="projectGoal")
    language_config: Optional[Any] = Field(default=None, alias="languageConfig")


class TaskIndex(BaseModel):
    """The whole persisted index record."""

    model_config = ConfigDict(populate_by_name=True)

    version: str = INDEX_VERSION
    updated_at: datetime = Field(default_factory=_now, alias="updatedAt")
    metadata: IndexMetadata = Field(default_factory=IndexMetadata)
    tasks: dict[str, IndexEntry] = Field(default_factory=dict)

    @field_validator("updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)

    @field_validator("tasks")
    @classmethod
    def _check_task_ids(cls, tasks: dict[str, IndexEntry]) -> dict[str, IndexEntry]:
        bad = [key for key in tasks if not is_valid_task_id(key)]
        if bad:
            raise ValueError(f"invalid task id(s): {', '.join(sorted(bad))}")
        return tasks

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _coerce_entry(entry: IndexEntry | dict[str, Any]) -> IndexEntry:
    if isinstance(entry, IndexEntry):
        return entry
    try:
        return IndexEntry.model_validate(entry)
    except ValidationError as exc:
        raise ValueError(f"invalid index entry: {exc}") from exc


class IndexRepository:
    """Async repository over the task index file.

    Parameters
    ----------
    fs:
        Retrying file system used for every read and write.
    tasks_dir:
        Directory that holds ``index.json`` and the task documents.
    """

    def __init__(self, fs: FileSystem, tasks_dir: Path) -> None:
        self._fs = fs
        self.tasks_dir = tasks_dir
        self.index_path = tasks_dir / INDEX_FILE

    # -- whole-index I/O ----------------------------------------------------

    async def read(self) -> TaskIndex:
        """Load the index, or a fresh empty one if nothing has been written yet.

        Raises:
            SerializationError: The file exists but is not a valid index record.
        """
        if not await self._fs.exists(self.index_path):
            return TaskIndex()
        text = await self._fs.read_text(self.index_path)
        data = decode_json_object(text, self.index_path)
        try:
            return TaskIndex.model_validate(data)
        except ValidationError as exc:
            raise SerializationError(f"invalid task index: {exc}", self.index_path) from exc

    async def write(self, index: TaskIndex) -> None:
        index.updated_at = _monotonic_after(index.updated_at)
        await self._fs.ensure_dir(self.index_path.parent)
        await self._fs.write_text(self.index_path, json.dumps(index.to_record(), indent=2) + "\n")

    # -- entries ------------------------------------------------------------

    async def upsert_entry(self, task_id: str, entry: IndexEntry | dict[str, Any]) -> None:
        """Insert or replace the entry for *task_id*.

        Raises:
            ValueError: *task_id* is not a dotted task id or *entry* is malformed.
        """
        if not is_valid_task_id(task_id):
            raise ValueError(f"Invalid task id: {task_id!r}")
        coerced = _coerce_entry(entry)
        index = await self.read()
        index.tasks[task_id] = coerced
        await self.write(index)
        logger.debug("Indexed task {} ({}, priority {})", task_id, coerced.status.value, coerced.priority)

    async def update_status(self, task_id: str, status: TaskStatus | str) -> None:
        """Change only the status of an existing entry.

        Raises:
            NotFound: *task_id* has no entry.
        """
        new_status = TaskStatus(status)
        index = await self.read()
        entry = index.tasks.get(task_id)
        if entry is None:
            raise NotFound("Task", task_id)
        entry.status = new_status
        await self.write(index)

    async def remove_entry(self, task_id: str) -> None:
        index = await self.read()
        if task_id not in index.tasks:
            raise NotFound("Task", task_id)
        del index.tasks[task_id]
        await self.write(index)

    async def get_entry(self, task_id: str) -> Optional[IndexEntry]:
        index = await self.read()
        return index.tasks.get(task_id)

    async def update_metadata(self, **fields: Any) -> None:
        """Shallow-merge *fields* over the index metadata; omitted fields are kept."""
        index = await self.read()
        merged = index.metadata.model_dump()
        merged.update(fields)
        index.metadata = IndexMetadata.model_validate(merged)
        await self.write(index)

    # -- queries ------------------------------------------------------------

    async def has_entry(self, task_id: str) -> bool:
        index = await self.read()
        return task_id in index.tasks

    async def all_ids(self) -> list[str]:
        index = await self.read()
        return list(index.tasks)

    async def query_by_status(self, status: TaskStatus | str) -> list[str]:
        wanted = TaskStatus(status)
        index = await self.read()
        return [task_id for task_id, entry in index.tasks.items() if entry.status == wanted]

    async def ordered_ids(self, statuses: Iterable[TaskStatus | str]) -> list[str]:
        """Ids whose status is in *statuses*, ascending by priority (ties keep index order)."""
        wanted = {TaskStatus(s) for s in statuses}
        index = await self.read()
        candidates = [(task_id, entry) for task_id, entry in index.tasks.items() if entry.status in wanted]
        candidates.sort(key=lambda item: item[1].priority)
        return [task_id for task_id, _ in candidates]

    async def get_next_task(self) -> Optional[str]:
        """Most urgent pending/in-progress task id, ignoring dependencies."""
        ordered = await self.ordered_ids(NEXT_TASK_STATUSES)
        return ordered[0] if ordered else None

    async def resolve_task_path(self, task_id: str) -> Optional[Path]:
        """Absolute path of the task document, or None if the task is not indexed."""
        entry = await self.get_entry(task_id)
        if entry is None:
            return None
        if entry.file_path:
            return self.tasks_dir / entry.file_path
        return self.tasks_dir / default_task_file(task_id, entry.module)


def default_task_file(task_id: str, module: str) -> str:
    """Relative document path for a task: ``<module>/<id minus module prefix>.yaml``."""
    prefix = f"{module}."
    name = task_id[len(prefix):] if task_id.startswith(prefix) else task_id
    return f"{module}/{name}{TASK_FILE_SUFFIX}"
