"""Exception types raised by the workflow engine."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class InvalidTransition(EngineError):
    """Raised when a task or session is asked to make a move its state machine forbids."""

    def __init__(
        self,
        entity: str,
        current: str,
        target: str,
        allowed: Iterable[str],
        message: Optional[str] = None,
    ) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        self.allowed = tuple(allowed)
        if message is None:
            allowed_text = ", ".join(self.allowed) if self.allowed else "none"
            message = (
                f"Invalid {entity} transition: {current} -> {target}. "
                f"Allowed: {allowed_text}"
            )
        super().__init__(message)


class NotFound(EngineError, KeyError):
    """Raised when an id is not present in the index or store."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])


class CircuitOpenError(EngineError):
    """Raised by the circuit breaker while it is failing fast."""

    def __init__(self, name: str, retry_in: float) -> None:
        self.name = name
        self.retry_in = max(0.0, retry_in)
        super().__init__(
            f"Circuit breaker '{name}' is OPEN; retry in {self.retry_in:.1f}s"
        )


class SerializationError(EngineError, ValueError):
    """Raised when persisted content cannot be decoded into engine objects."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        self.path = path
        if path is not None:
            message = f"{path.name}: {message}"
        super().__init__(message)


class BatchRolledBack(EngineError):
    """Raised when an atomic batch fails and previously touched tasks were restored."""

    def __init__(self, task_id: str, reason: str) -> None:
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Batch operation failed on {task_id}, rolled back: {reason}")
