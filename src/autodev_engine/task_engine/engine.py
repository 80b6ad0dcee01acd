"""Task service: lifecycle operations and dependency-aware task selection.

This is the entry point callers use to move tasks along. It loads tasks from
the :class:`TaskStore`, applies the entity transition, saves the result (which
also refreshes the index) and keeps the session's ``current_task`` and the
progress log up to date.

Next-task selection is two-tiered: the index returns pending ids sorted by
priority without looking at dependencies, then this service loads those tasks
and skips any whose dependencies are not all completed.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal, Optional

from loguru import logger

from ..constants import DEFAULT_LIST_LIMIT, DEFAULT_TASK_ESTIMATE_MINUTES, DEFAULT_TASK_PRIORITY
from ..errors import BatchRolledBack, EngineError
from ..io_utils import FileSystem
from ..utils import _now_iso
from .index import IndexRepository
from .model import Task, TaskStatus, TestRequirement, TestRequirements, is_valid_task_id
from .state_store import StateStore
from .store import TaskStore

SortKey = Literal["priority", "status", "estimated_minutes"]
BatchAction = Literal["start", "done", "fail"]


@dataclass
class TaskListResult:
    tasks: list[Task]
    total: int
    offset: int
    limit: int

    @property
    def returned(self) -> int:
        return len(self.tasks)


@dataclass
class BatchOperation:
    action: BatchAction
    task_id: str
    reason: Optional[str] = None
    duration: Optional[str] = None


@dataclass
class BatchResult:
    task_id: str
    action: str
    success: bool
    error: Optional[str] = None


@dataclass
class _Selection:
    task: Optional[Task] = None
    blocked: dict[str, list[str]] = field(default_factory=dict)


class TaskService:
    """Manage the lifecycle of tasks in one workspace.

    Parameters
    ----------
    store:
        Task document store (owns the index it keeps in sync).
    state_store:
        Optional session state store; when present, ``current_task`` follows
        task starts and completions.
    fs:
        File system used for the best-effort progress log.
    progress_log_path:
        ``.autodev/progress.log``; no progress log is written when omitted.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        state_store: Optional[StateStore] = None,
        fs: Optional[FileSystem] = None,
        progress_log_path: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.index: IndexRepository = store.index
        self.state_store = state_store
        self._fs = fs
        self._progress_log_path = progress_log_path

    async def _log_progress(self, action: str, task_id: str, details: Optional[str] = None) -> None:
        """Append a progress line; failures are logged and never raised."""
        if self._fs is None or self._progress_log_path is None:
            return
        line = f"[{_now_iso()}] {action}: {task_id}"
        if details:
            line += f" - {details}"
        try:
            await self._fs.ensure_dir(self._progress_log_path.parent)
            await self._fs.append_text(self._progress_log_path, line + "\n")
        except Exception as exc:
            logger.warning("Failed to write progress log {}: {}", self._progress_log_path, exc)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create_task(
        self,
        task_id: str,
        module: str,
        description: str,
        *,
        priority: Optional[int] = None,
        estimated_minutes: Optional[int] = None,
        acceptance_criteria: Optional[list[str]] = None,
        dependencies: Optional[list[str]] = None,
        test_pattern: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Task:
        """Create and persist a new pending task, returning it.

        Raises:
            ValueError: The id is malformed or already taken.
        """
        if not is_valid_task_id(task_id):
            raise ValueError(f"Invalid task id: {task_id!r}")
        if await self.index.has_entry(task_id):
            raise ValueError(f"Task {task_id} already exists")
        task = Task(
            id=task_id,
            module=module,
            description=description,
            priority=priority if priority is not None else DEFAULT_TASK_PRIORITY,
            status=TaskStatus.PENDING,
            acceptance_criteria=list(acceptance_criteria or []),
            estimated_minutes=estimated_minutes if estimated_minutes is not None else DEFAULT_TASK_ESTIMATE_MINUTES,
            dependencies=list(dependencies or []),
            test_requirements=(
                TestRequirements(unit=TestRequirement(required=True, pattern=test_pattern)) if test_pattern else None
            ),
            notes=notes,
        )
        await self.store.save(task)
        logger.info("Created task {}: {}", task.id, description)
        return task

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self.store.get(task_id)

    async def completed_ids(self) -> set[str]:
        return set(await self.index.query_by_status(TaskStatus.COMPLETED))

    async def list_tasks(
        self,
        *,
        status: Optional[TaskStatus | str] = None,
        module: Optional[str] = None,
        priority: Optional[int] = None,
        has_dependencies: Optional[bool] = None,
        ready: bool = False,
        sort: SortKey = "priority",
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> TaskListResult:
        """List tasks with filtering, sorting and pagination.

        ``ready=True`` keeps only pending tasks whose dependencies are all
        completed.
        """
        tasks = await self.store.find(status=status, module=module)
        if priority is not None:
            tasks = [t for t in tasks if t.priority == priority]
        if has_dependencies is not None:
            tasks = [t for t in tasks if t.has_dependencies() == has_dependencies]
        if ready:
            completed = await self.completed_ids()
            tasks = [t for t in tasks if t.status == TaskStatus.PENDING and not t.is_blocked(completed)]

        if sort == "priority":
            tasks.sort(key=lambda t: t.priority)
        elif sort == "status":
            tasks.sort(key=lambda t: t.status.value)
        elif sort == "estimated_minutes":
            tasks.sort(key=lambda t: t.estimated_minutes or 0)
        else:
            raise ValueError(f"Unknown sort key: {sort}")

        total = len(tasks)
        offset = max(0, offset)
        page = tasks[offset:offset + max(0, limit)]
        return TaskListResult(tasks=page, total=total, offset=offset, limit=limit)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def _select(self) -> _Selection:
        selection = _Selection()
        candidates = await self.index.ordered_ids([TaskStatus.PENDING])
        if not candidates:
            return selection
        completed = await self.completed_ids()
        for task_id in candidates:
            task = await self.store.get(task_id)
            if task is None:
                logger.warning("Skipping {}: indexed but task document is missing", task_id)
                continue
            if task.status != TaskStatus.PENDING:
                logger.warning(
                    "Skipping {}: index says pending but task is {}", task_id, task.status.value
                )
                continue
            if task.is_blocked(completed):
                selection.blocked[task_id] = task.missing_dependencies(completed)
                continue
            selection.task = task
            return selection
        return selection

    async def get_next_task(self) -> Optional[Task]:
        """The most urgent pending task whose dependencies are all completed, or None."""
        logger.debug("Getting next task")
        selection = await self._select()
        if selection.task is not None:
            logger.info("Next task: {}", selection.task.id)
            return selection.task
        if not selection.blocked:
            logger.info("No pending tasks found")
            return None

        logger.warning("No tasks with satisfied dependencies found ({} blocked)", len(selection.blocked))
        known = set(await self.index.all_ids())
        for task_id, missing in selection.blocked.items():
            dangling = [dep for dep in missing if dep not in known]
            if dangling:
                # These can never complete, so the task stays blocked until the ids are fixed.
                logger.warning("Task {} depends on unknown task(s): {}", task_id, ", ".join(dangling))
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _set_current_task(self, task_id: Optional[str], *, only_if: Optional[str] = None) -> None:
        if self.state_store is None:
            return
        state = await self.state_store.get()
        if state is None:
            return
        if only_if is not None and state.current_task != only_if:
            return
        await self.state_store.update(current_task=task_id)

    async def start_task(self, task_id: str) -> Task:
        """Mark a pending task in progress. Starting an in-progress task is a no-op.

        Raises:
            NotFound: No such task.
            InvalidTransition: The task is neither pending nor in progress.
        """
        logger.info("Starting task: {}", task_id)
        task = await self.store.require(task_id)
        if task.status == TaskStatus.IN_PROGRESS:
            logger.warning("Task already in progress: {}", task_id)
            return task
        task.start()
        await self.store.save(task)
        await self._set_current_task(task_id)
        await self._log_progress("STARTED", task_id)
        return task

    async def complete_task(self, task_id: str, duration: Optional[str] = None) -> Task:
        """Mark an in-progress task completed. Completing a completed task is a no-op."""
        logger.info("Completing task: {}", task_id)
        task = await self.store.require(task_id)
        if task.status == TaskStatus.COMPLETED:
            logger.warning("Task already completed: {}", task_id)
            return task
        task.complete()
        if duration:
            task.append_note(f"Completed in {duration}")
        await self.store.save(task)
        await self._set_current_task(None, only_if=task_id)
        await self._log_progress("COMPLETED", task_id, duration)
        if task.is_over_estimate():
            logger.warning(
                "Task {} took {} min (estimate {} min)",
                task_id,
                task.get_actual_duration(),
                task.estimated_minutes,
            )
        return task

    async def fail_task(self, task_id: str, reason: str) -> Task:
        """Mark an in-progress task failed and record *reason* in its notes."""
        logger.info("Failing task: {} ({})", task_id, reason)
        task = await self.store.require(task_id)
        task.fail()
        task.append_note(f"Failed: {reason}")
        await self.store.save(task)
        await self._set_current_task(None, only_if=task_id)
        await self._log_progress("FAILED", task_id, reason)
        return task

    async def batch(self, operations: Iterable[BatchOperation], *, atomic: bool = False) -> list[BatchResult]:
        """Run start/done/fail operations in order.

        Without *atomic*, failures are reported per operation and the batch
        continues. With *atomic*, the first failure restores every task touched
        so far to its saved copy and raises :class:`BatchRolledBack`.
        """
        results: list[BatchResult] = []
        backups: dict[str, Task] = {}
        for op in operations:
            try:
                if atomic and op.task_id not in backups:
                    current = await self.store.get(op.task_id)
                    if current is not None:
                        backups[op.task_id] = copy.deepcopy(current)
                await self._apply(op)
                results.append(BatchResult(task_id=op.task_id, action=op.action, success=True))
            except (EngineError, ValueError) as exc:
                results.append(BatchResult(task_id=op.task_id, action=op.action, success=False, error=str(exc)))
                if atomic:
                    logger.warning("Batch operation failed, rolling back {} task(s): {}", len(backups), exc)
                    for backup in backups.values():
                        await self.store.save(backup)
                    raise BatchRolledBack(op.task_id, str(exc)) from exc

        succeeded = sum(1 for r in results if r.success)
        logger.info("Batch operations completed: {} succeeded, {} failed", succeeded, len(results) - succeeded)
        return results

    async def _apply(self, op: BatchOperation) -> Task:
        if op.action == "start":
            return await self.start_task(op.task_id)
        if op.action == "done":
            return await self.complete_task(op.task_id, op.duration)
        if op.action == "fail":
            if not op.reason:
                raise ValueError("Reason required for fail action")
            return await self.fail_task(op.task_id, op.reason)
        raise ValueError(f"Unknown action: {op.action}")

