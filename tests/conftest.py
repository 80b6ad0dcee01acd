"""Shared fixtures for engine tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from autodev_engine.io_utils import FileSystem
from autodev_engine.resilience.retry import RetryConfig


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fs(sleep: RecordingSleep) -> FileSystem:
    return FileSystem(RetryConfig(), sleep=sleep)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".autodev"
    d.mkdir()
    return d
