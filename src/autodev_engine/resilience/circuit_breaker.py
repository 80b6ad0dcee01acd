"""Circuit breaker guarding a repeatedly failing asynchronous operation.

States:

- CLOSED: calls pass through; consecutive failures are counted.
- OPEN: calls are rejected with :class:`CircuitOpenError` until ``timeout``
  seconds have passed since the circuit opened.
- HALF_OPEN: a single trial call is let through. Success closes the circuit,
  failure re-opens it.

State lives in memory only; a new process always starts CLOSED.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from ..constants import DEFAULT_CIRCUIT_FAILURE_THRESHOLD, DEFAULT_CIRCUIT_TIMEOUT_SECONDS
from ..errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing fast
    HALF_OPEN = "HALF_OPEN"  # One trial call allowed


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for :class:`CircuitBreaker`."""

    failure_threshold: int = DEFAULT_CIRCUIT_FAILURE_THRESHOLD
    timeout: float = DEFAULT_CIRCUIT_TIMEOUT_SECONDS  # seconds spent OPEN

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.timeout < 0:
            raise ValueError("timeout must be non-negative")


@dataclass
class CircuitBreakerMetrics:
    """Point-in-time snapshot of a breaker, for status output and logs."""

    state: CircuitState
    failure_count: int
    opened_at: Optional[float]
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    state_transitions: dict[str, int] = field(default_factory=dict)


StateListener = Callable[[CircuitState, CircuitState], None]


class CircuitBreaker:
    """Fail fast once an operation keeps failing.

    Example::

        breaker = CircuitBreaker("healing", CircuitBreakerConfig(failure_threshold=3))
        try:
            fixed = await breaker.call(run_repair)
        except CircuitOpenError:
            fixed = False
    """

    def __init__(
        self,
        name: str = "default",
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateListener] = None,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._on_state_change = on_state_change
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._total_calls = 0
        self._successful_calls = 0
        self._failed_calls = 0
        self._rejected_calls = 0
        self._transitions: dict[str, int] = {}

    # -- introspection ------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def opened_at(self) -> Optional[float]:
        return self._opened_at

    def metrics(self) -> CircuitBreakerMetrics:
        return CircuitBreakerMetrics(
            state=self._state,
            failure_count=self._failure_count,
            opened_at=self._opened_at,
            total_calls=self._total_calls,
            successful_calls=self._successful_calls,
            failed_calls=self._failed_calls,
            rejected_calls=self._rejected_calls,
            state_transitions=dict(self._transitions),
        )

    # -- execution ----------------------------------------------------------

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* under breaker protection.

        Raises:
            CircuitOpenError: The circuit is OPEN and the timeout has not elapsed;
                *operation* is not invoked.
            Exception: Whatever *operation* raised, after it was recorded.
        """
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - (self._opened_at or 0.0)
            if elapsed >= self.config.timeout:
                self._set_state(CircuitState.HALF_OPEN)
            else:
                self._total_calls += 1
                self._rejected_calls += 1
                logger.debug("Circuit breaker '{}' rejected call ({:.1f}s open)", self.name, elapsed)
                raise CircuitOpenError(self.name, self.config.timeout - elapsed)

        self._total_calls += 1
        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED with a zero failure count."""
        self._failure_count = 0
        self._opened_at = None
        if self._state != CircuitState.CLOSED:
            self._set_state(CircuitState.CLOSED)

    # -- internals ----------------------------------------------------------

    def _on_success(self) -> None:
        self._successful_calls += 1
        self._failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            self._set_state(CircuitState.CLOSED)

    def _on_failure(self) -> None:
        self._failed_calls += 1
        if self._state == CircuitState.HALF_OPEN:
            self._open()
            return
        self._failure_count += 1
        if self._failure_count >= self.config.failure_threshold:
            self._open()

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._set_state(CircuitState.OPEN)

    def _set_state(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        key = f"{old_state.value}->{new_state.value}"
        self._transitions[key] = self._transitions.get(key, 0) + 1
        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit breaker '{}' opened after {} failure(s); failing fast for {}s",
                self.name,
                self._failure_count,
                self.config.timeout,
            )
        else:
            logger.info("Circuit breaker '{}': {} -> {}", self.name, old_state.value, new_state.value)
        if self._on_state_change is not None:
            self._on_state_change(old_state, new_state)
