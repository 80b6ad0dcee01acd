"""Run automated repairs for failed tasks behind a circuit breaker.

Every attempt is counted per task and in aggregate. When the breaker state
differs from the last one observed, a line is appended to the circuit breaker
audit log (``.autodev/circuit-breaker.log``). Audit log failures are logged and
never fail the healing attempt.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Union

from loguru import logger

from .errors import CircuitOpenError
from .io_utils import FileSystem
from .resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .utils import _now_iso


class HealingOperation(Protocol):
    async def heal(self) -> bool: ...


RepairFn = Callable[[], Awaitable[bool]]


@dataclass
class HealingResult:
    success: bool
    task_id: str
    attempt_number: int
    circuit_state: CircuitState
    error: Optional[BaseException] = None


@dataclass
class HealingStats:
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    circuit_open_count: int = 0
    current_circuit_state: CircuitState = CircuitState.CLOSED


class HealingCoordinator:
    """Coordinate repeated repair attempts with failure isolation.

    Parameters
    ----------
    fs:
        File system used to append to the audit log.
    log_path:
        Circuit breaker audit log.
    config:
        Breaker thresholds; defaults to 5 failures / 60 s.
    clock:
        Monotonic clock handed to the breaker.
    """

    def __init__(
        self,
        fs: FileSystem,
        log_path: Path,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fs = fs
        self.log_path = log_path
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breaker = CircuitBreaker("healing", self._config, clock=clock)
        self._stats = HealingStats()
        self._attempts: dict[str, int] = {}
        self._last_state = CircuitState.CLOSED

    @property
    def circuit_state(self) -> CircuitState:
        return self._breaker.state

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def stats(self) -> HealingStats:
        return HealingStats(
            total_attempts=self._stats.total_attempts,
            successful_attempts=self._stats.successful_attempts,
            failed_attempts=self._stats.failed_attempts,
            circuit_open_count=self._stats.circuit_open_count,
            current_circuit_state=self._stats.current_circuit_state,
        )

    def attempts_for(self, task_id: str) -> int:
        return self._attempts.get(task_id, 0)

    async def attempt_healing(
        self,
        task_id: str,
        operation: Union[RepairFn, HealingOperation],
    ) -> HealingResult:
        """Run one repair attempt for *task_id* through the breaker.

        A repair that returns ``False`` is a failed attempt but does not count
        against the breaker; one that raises does. While the breaker is OPEN
        the repair is not invoked and the :class:`CircuitOpenError` is returned
        as the result's error.
        """
        repair = operation.heal if hasattr(operation, "heal") else operation
        attempt_number = self._attempts.get(task_id, 0) + 1
        self._attempts[task_id] = attempt_number
        self._stats.total_attempts += 1
        logger.info(
            "Attempting to heal task {} (attempt {}, circuit {})",
            task_id,
            attempt_number,
            self.circuit_state.value,
        )

        try:
            success = bool(await self._breaker.call(repair))
        except Exception as exc:
            self._stats.failed_attempts += 1
            await self._record_state_change()
            new_state = self.circuit_state
            if new_state == CircuitState.OPEN and self._stats.current_circuit_state != CircuitState.OPEN:
                self._stats.circuit_open_count += 1
                logger.error(
                    "Circuit breaker opened - healing disabled temporarily "
                    "(failed attempts {}, open count {})",
                    self._stats.failed_attempts,
                    self._stats.circuit_open_count,
                )
            self._stats.current_circuit_state = new_state
            if isinstance(exc, CircuitOpenError):
                logger.warning("Healing of {} skipped: {}", task_id, exc)
            else:
                logger.error(
                    "Healing failed for {} (attempt {}, circuit {}): {}",
                    task_id,
                    attempt_number,
                    new_state.value,
                    exc,
                )
            return HealingResult(
                success=False,
                task_id=task_id,
                attempt_number=attempt_number,
                circuit_state=new_state,
                error=exc,
            )

        if success:
            self._stats.successful_attempts += 1
            logger.info("Healing succeeded for {} (attempt {})", task_id, attempt_number)
        else:
            self._stats.failed_attempts += 1
            logger.warning("Healing operation returned false for {} (attempt {})", task_id, attempt_number)
        await self._record_state_change()
        self._stats.current_circuit_state = self.circuit_state
        return HealingResult(
            success=success,
            task_id=task_id,
            attempt_number=attempt_number,
            circuit_state=self.circuit_state,
        )

    def reset_circuit(self) -> None:
        """Start over with a fresh CLOSED breaker (manual recovery)."""
        logger.info("Resetting circuit breaker")
        self._breaker = CircuitBreaker("healing", self._config, clock=self._clock)
        self._stats.current_circuit_state = CircuitState.CLOSED
        self._last_state = CircuitState.CLOSED

    async def _record_state_change(self) -> None:
        state = self.circuit_state
        if state == self._last_state:
            return
        self._last_state = state
        entry = f"[{_now_iso()}] Circuit state: {state.value}\n"
        try:
            await self._fs.ensure_dir(self.log_path.parent)
            await self._fs.append_text(self.log_path, entry)
        except Exception as exc:
            logger.error("Failed to write to circuit breaker log {}: {}", self.log_path, exc)
