"""Load optional engine configuration from `.autodev/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger

from .constants import CONFIG_FILE, STATE_DIR_NAME
from .io_utils import _load_data_with_error
from .resilience.circuit_breaker import CircuitBreakerConfig
from .resilience.retry import RetryConfig


def load_engine_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        project_dir: Repository root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_section(config: dict[str, Any], key: str) -> dict[str, Any]:
    raw = config.get(key)
    return raw if isinstance(raw, dict) else {}


def _positive_number(raw: Any, *, integer: bool = False) -> Any:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    if raw < 0:
        return None
    if integer:
        return int(raw) if raw >= 1 else None
    return float(raw)


def get_retry_config(config: dict[str, Any]) -> RetryConfig:
    """Build a :class:`RetryConfig` from the `retry` block, ignoring invalid values.

    Args:
        config: Engine configuration dictionary.

    Returns:
        Defaults overlaid with every valid key found in the block.
    """
    section = _get_section(config, "retry")
    overrides: dict[str, Any] = {
        "max_attempts": _positive_number(section.get("max_attempts"), integer=True),
        "initial_delay": _positive_number(section.get("initial_delay")),
        "max_delay": _positive_number(section.get("max_delay")),
        "backoff_multiplier": _positive_number(section.get("backoff_multiplier")),
    }
    multiplier = overrides["backoff_multiplier"]
    if multiplier is not None and multiplier < 1:
        overrides["backoff_multiplier"] = None
    codes = section.get("retryable_errors")
    if isinstance(codes, list) and all(isinstance(c, str) for c in codes):
        overrides["retryable_errors"] = [c.upper() for c in codes]
    ignored = sorted(k for k in section if k not in overrides and k != "retryable_errors")
    if ignored:
        logger.warning("Ignoring unknown retry config keys: {}", ", ".join(ignored))
    return RetryConfig().merged(**overrides)


def get_circuit_breaker_config(config: dict[str, Any]) -> CircuitBreakerConfig:
    """Build a :class:`CircuitBreakerConfig` from the `circuit_breaker` block."""
    section = _get_section(config, "circuit_breaker")
    defaults = CircuitBreakerConfig()
    threshold = _positive_number(section.get("failure_threshold"), integer=True)
    timeout = _positive_number(section.get("timeout"))
    return CircuitBreakerConfig(
        failure_threshold=threshold if threshold is not None else defaults.failure_threshold,
        timeout=timeout if timeout is not None else defaults.timeout,
    )
