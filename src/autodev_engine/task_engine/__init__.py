"""Task and session model, persistence and the task service.

The index (``index.json``) is the fast registry used for status queries; task
documents hold the full records; :class:`TaskService` ties them together.
"""

from .engine import BatchOperation, BatchResult, TaskListResult, TaskService
from .index import IndexEntry, IndexRepository, TaskIndex
from .model import Task, TaskStatus, TestRequirement, TestRequirements, is_valid_task_id
from .session import Phase, SessionState
from .state_store import StateStore
from .store import TaskStore

__all__ = [
    "BatchOperation",
    "BatchResult",
    "IndexEntry",
    "IndexRepository",
    "Phase",
    "SessionState",
    "StateStore",
    "Task",
    "TaskIndex",
    "TaskListResult",
    "TaskService",
    "TaskStatus",
    "TaskStore",
    "TestRequirement",
    "TestRequirements",
    "is_valid_task_id",
]
