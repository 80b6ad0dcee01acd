"""Tests for the circuit breaker (resilience/circuit_breaker.py)."""

from __future__ import annotations

import asyncio

import pytest

from autodev_engine.errors import CircuitOpenError
from autodev_engine.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


class Boom(Exception):
    pass


class Operation:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.fail:
            raise Boom("repair failed")
        return "fixed"


def _breaker(clock, threshold: int = 3, timeout: float = 60.0, **kwargs) -> CircuitBreaker:
    return CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=threshold, timeout=timeout), clock=clock, **kwargs)


def _fail(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(Boom):
            asyncio.run(breaker.call(Operation(fail=True)))


class TestClosed:
    def test_starts_closed(self, clock) -> None:
        breaker = _breaker(clock)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.opened_at is None

    def test_success_passes_result_through(self, clock) -> None:
        assert asyncio.run(_breaker(clock).call(Operation())) == "fixed"

    def test_opens_at_threshold(self, clock) -> None:
        breaker = _breaker(clock, threshold=3)
        _fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 2
        _fail(breaker, 1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.opened_at == clock.now

    def test_success_resets_counter(self, clock) -> None:
        breaker = _breaker(clock, threshold=3)
        _fail(breaker, 2)
        asyncio.run(breaker.call(Operation()))
        assert breaker.failure_count == 0
        _fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

    def test_default_config(self) -> None:
        cfg = CircuitBreakerConfig()
        assert cfg.failure_threshold == 5
        assert cfg.timeout == 60.0
        with pytest.raises(ValueError):
            CircuitBreakerConfig(failure_threshold=0)


class TestOpen:
    def test_rejects_without_invoking(self, clock) -> None:
        breaker = _breaker(clock, threshold=1)
        _fail(breaker, 1)
        clock.advance(59.9)
        op = Operation()
        with pytest.raises(CircuitOpenError) as exc_info:
            asyncio.run(breaker.call(op))
        assert op.calls == 0
        assert exc_info.value.name == "test"
        assert exc_info.value.retry_in == pytest.approx(0.1)
        assert breaker.state == CircuitState.OPEN

    def test_half_open_after_timeout_then_close_on_success(self, clock) -> None:
        breaker = _breaker(clock, threshold=1)
        _fail(breaker, 1)
        clock.advance(60.0)
        op = Operation()
        assert asyncio.run(breaker.call(op)) == "fixed"
        assert op.calls == 1
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens_with_new_instant(self, clock) -> None:
        breaker = _breaker(clock, threshold=2)
        _fail(breaker, 2)
        first_open = breaker.opened_at
        clock.advance(61)
        _fail(breaker, 1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.opened_at == first_open + 61
        with pytest.raises(CircuitOpenError):
            asyncio.run(breaker.call(Operation()))


class TestIntrospection:
    def test_metrics_and_listener(self, clock) -> None:
        changes: list[tuple[CircuitState, CircuitState]] = []
        breaker = _breaker(clock, threshold=1, on_state_change=lambda old, new: changes.append((old, new)))
        _fail(breaker, 1)
        with pytest.raises(CircuitOpenError):
            asyncio.run(breaker.call(Operation()))
        clock.advance(60)
        asyncio.run(breaker.call(Operation()))

        assert changes == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]
        m = breaker.metrics()
        assert m.state == CircuitState.CLOSED
        assert m.total_calls == 3
        assert m.successful_calls == 1
        assert m.failed_calls == 1
        assert m.rejected_calls == 1
        assert m.state_transitions == {"CLOSED->OPEN": 1, "OPEN->HALF_OPEN": 1, "HALF_OPEN->CLOSED": 1}

    def test_reset(self, clock) -> None:
        breaker = _breaker(clock, threshold=1)
        _fail(breaker, 1)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.opened_at is None
        assert asyncio.run(breaker.call(Operation())) == "fixed"


class TestDefaultThreshold:
    def test_five_failures_then_recovery(self, clock) -> None:
        breaker = CircuitBreaker("healing", clock=clock)
        _fail(breaker, 4)
        assert breaker.state == CircuitState.CLOSED
        _fail(breaker, 1)
        op = Operation()
        with pytest.raises(CircuitOpenError):
            asyncio.run(breaker.call(op))
        assert op.calls == 0
        clock.advance(60)
        assert asyncio.run(breaker.call(op)) == "fixed"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
