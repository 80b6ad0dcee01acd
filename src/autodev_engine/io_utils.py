from __future__ import annotations

import asyncio
import json
import os
import shutil
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger

from .errors import SerializationError
from .resilience.retry import RetryConfig, SleepFn, with_retry


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(text)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def _append_text(path: Path, text: str) -> None:
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(text)
        handle.flush()


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _copy_path(src: Path, dest: Path) -> None:
    if src.is_dir():
        shutil.copytree(src, dest, dirs_exist_ok=True)
    else:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """
    Load JSON/YAML and return (data, error_message).

    Reports parse/IO failures so callers can fall back to defaults without
    silently hiding a broken file.
    """
    if not path.exists():
        return default, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
        if data is None:
            return default, None
        if not isinstance(data, dict):
            return default, f"{path.name}: expected object, got {type(data).__name__}"
        return data, None
    except OSError as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except json.JSONDecodeError as exc:
        return default, f"{path.name}: JSONDecodeError: {exc}"
    except yaml.YAMLError as exc:
        return default, f"{path.name}: YAMLError: {exc}"


def decode_json_object(text: str, path: Optional[Path] = None) -> dict[str, Any]:
    """Parse *text* as a JSON object or raise :class:`SerializationError`."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SerializationError(f"invalid JSON: {exc}", path) from exc
    if not isinstance(data, dict):
        raise SerializationError(f"expected object, got {type(data).__name__}", path)
    return data


def decode_yaml_object(text: str, path: Optional[Path] = None) -> dict[str, Any]:
    """Parse *text* as a YAML mapping or raise :class:`SerializationError`."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SerializationError(f"invalid YAML: {exc}", path) from exc
    if not isinstance(data, dict):
        raise SerializationError(f"expected mapping, got {type(data).__name__}", path)
    return data


def encode_yaml(data: dict[str, Any]) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)


class FileSystem:
    """Async file operations, each wrapped individually with retry/backoff.

    Blocking calls run in a worker thread so a retry delay only suspends the
    calling coroutine. ``exists`` never retries ENOENT, since a missing path is
    an answer rather than a fault.
    """

    def __init__(self, retry: Optional[RetryConfig] = None, *, sleep: SleepFn = asyncio.sleep) -> None:
        self.retry = retry or RetryConfig()
        self._exists_retry = self.retry.merged(
            retryable_errors=self.retry.retryable_errors - {"ENOENT"},
        )
        self._sleep = sleep

    async def _run(self, label: str, func: Any, *args: Any, config: Optional[RetryConfig] = None) -> Any:
        return await with_retry(
            lambda: asyncio.to_thread(func, *args),
            config or self.retry,
            sleep=self._sleep,
            label=label,
        )

    async def read_text(self, path: Path) -> str:
        """Read *path* as UTF-8.

        Raises:
            SerializationError: The content is not valid UTF-8.
        """
        logger.debug("Reading {}", path)
        raw = await self._run(f"read {path.name}", Path.read_bytes, path)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SerializationError(f"invalid UTF-8: {exc}", path) from exc

    async def write_text(self, path: Path, text: str) -> None:
        await self._run(f"write {path.name}", _atomic_write_text, path, text)

    async def exists(self, path: Path) -> bool:
        return await self._run(f"exists {path.name}", Path.exists, path, config=self._exists_retry)

    async def ensure_dir(self, path: Path) -> None:
        await self._run(f"mkdir {path.name}", _mkdirs, path)

    async def remove(self, path: Path) -> None:
        await self._run(f"remove {path.name}", _remove_path, path)

    async def list_dir(self, path: Path) -> list[str]:
        return await self._run(f"list {path.name}", _list_names, path)

    async def append_text(self, path: Path, text: str) -> None:
        await self._run(f"append {path.name}", _append_text, path, text)

    async def copy(self, src: Path, dest: Path) -> None:
        await self._run(f"copy {src.name}", _copy_path, src, dest)


def _mkdirs(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _list_names(path: Path) -> list[str]:
    return sorted(os.listdir(path))
