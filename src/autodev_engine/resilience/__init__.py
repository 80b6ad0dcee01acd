"""Resilience primitives guarding fallible engine operations."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerMetrics, CircuitState
from .retry import RetryConfig, error_code, is_retryable, retrying, with_retry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerMetrics",
    "CircuitState",
    "RetryConfig",
    "error_code",
    "is_retryable",
    "retrying",
    "with_retry",
]
