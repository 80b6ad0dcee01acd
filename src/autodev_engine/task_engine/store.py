"""File-based task store.

Each task is a YAML document under the tasks directory
(``<module>/<name>.yaml`` unless the index names another path). Saving a task
also refreshes its entry in the :class:`IndexRepository`, which is what keeps
the index a faithful mirror of the documents.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from loguru import logger

from ..errors import NotFound, SerializationError
from ..io_utils import FileSystem, decode_yaml_object, encode_yaml
from .index import IndexRepository, default_task_file
from .model import Task, TaskStatus


class TaskStore:
    """Async store for :class:`Task` documents.

    Parameters
    ----------
    fs:
        Retrying file system.
    index:
        Index repository kept in sync with every save/delete.
    """

    def __init__(self, fs: FileSystem, index: IndexRepository) -> None:
        self._fs = fs
        self.index = index
        self.tasks_dir = index.tasks_dir

    # -- internal helpers ---------------------------------------------------

    def _relative_path(self, task: Task, existing: Optional[str]) -> str:
        return existing or default_task_file(task.id, task.module)

    async def _load(self, path: Path) -> Task:
        text = await self._fs.read_text(path)
        data = decode_yaml_object(text, path)
        try:
            return Task.from_dict(data)
        except SerializationError as exc:
            raise SerializationError(str(exc), path) from exc

    # -- public API ---------------------------------------------------------

    async def get(self, task_id: str) -> Optional[Task]:
        """Load a task by id; None if it is not indexed or its document is gone."""
        path = await self.index.resolve_task_path(task_id)
        if path is None or not await self._fs.exists(path):
            return None
        return await self._load(path)

    async def require(self, task_id: str) -> Task:
        task = await self.get(task_id)
        if task is None:
            raise NotFound("Task", task_id)
        return task

    async def save(self, task: Task) -> Path:
        """Write the task document and upsert its index entry. Returns the document path."""
        entry = await self.index.get_entry(task.id)
        relative = self._relative_path(task, entry.file_path if entry else None)
        path = self.tasks_dir / relative
        await self._fs.ensure_dir(path.parent)
        await self._fs.write_text(path, encode_yaml(task.to_dict()))
        await self.index.upsert_entry(task.id, task.to_index_entry(file_path=relative))
        logger.debug("Saved task {} ({})", task.id, task.status.value)
        return path

    async def delete(self, task_id: str) -> None:
        """Remove the task document and its index entry.

        Raises:
            NotFound: The task is not indexed.
        """
        path = await self.index.resolve_task_path(task_id)
        if path is None:
            raise NotFound("Task", task_id)
        if await self._fs.exists(path):
            await self._fs.remove(path)
        await self.index.remove_entry(task_id)
        logger.info("Deleted task {}", task_id)

    async def find(
        self,
        *,
        status: Optional[TaskStatus | str] = None,
        module: Optional[str] = None,
    ) -> list[Task]:
        """Load every indexed task matching the filters, in index order.

        Entries whose document is missing are skipped with a warning.
        """
        wanted = TaskStatus(status) if status is not None else None
        index = await self.index.read()
        out: list[Task] = []
        for task_id, entry in index.tasks.items():
            if wanted is not None and entry.status != wanted:
                continue
            if module is not None and entry.module != module:
                continue
            task = await self.get(task_id)
            if task is None:
                logger.warning("Index lists {} but its task document is missing", task_id)
                continue
            out.append(task)
        return out
