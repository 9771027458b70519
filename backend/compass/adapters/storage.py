# backend/compass/adapters/storage.py
"""
String-keyed storage for flows and session snapshots.

Two backends:
- MemoryStore: process-local dict (default, tests).
- FileStore: one JSON file per key under STORAGE_DIR.

Both are wrapped in RetryingStore, which retries a failed call
STORAGE_RETRIES times and then raises StorageError. Last writer wins per key.
"""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar
from urllib.parse import quote, unquote

from compass.core.config import Settings, get_settings
from compass.core.errors import StorageError

logger = logging.getLogger(__name__)

__all__ = ["KeyValueStore", "MemoryStore", "FileStore", "RetryingStore", "build_store", "get_store"]

T = TypeVar("T")


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list_keys(self, prefix: str = "") -> List[str]: ...


class MemoryStore:
    """Dict-backed store. Safe for concurrent tasks on one event loop."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def put(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self.data if k.startswith(prefix))


class FileStore:
    """One file per key; writes go through a temp file + rename."""

    SUFFIX = ".json"

    def __init__(self, root: os.PathLike | str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / (quote(key, safe="") + self.SUFFIX)

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def _list(self, prefix: str) -> List[str]:
        keys = [
            unquote(p.name[: -len(self.SUFFIX)])
            for p in self.root.glob("*" + self.SUFFIX)
            if not p.name.startswith(".tmp-")
        ]
        return sorted(k for k in keys if k.startswith(prefix))

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._list, prefix)


class RetryingStore:
    """Retry-then-raise wrapper around any KeyValueStore."""

    def __init__(self, inner: KeyValueStore, retries: int = 1):
        self.inner = inner
        self.retries = max(0, retries)

    async def _call(self, key: str, op: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await op()
            except (OSError, ValueError, StorageError) as e:
                if attempt >= self.retries:
                    raise StorageError(key, e) from e
                attempt += 1
                logger.warning("Storage call on %s failed (%s); retry %d/%d", key, e, attempt, self.retries)

    async def get(self, key: str) -> Optional[str]:
        return await self._call(key, lambda: self.inner.get(key))

    async def put(self, key: str, value: str) -> None:
        await self._call(key, lambda: self.inner.put(key, value))

    async def delete(self, key: str) -> None:
        await self._call(key, lambda: self.inner.delete(key))

    async def list_keys(self, prefix: str = "") -> List[str]:
        return await self._call(prefix or "*", lambda: self.inner.list_keys(prefix))


def build_store(settings: Optional[Settings] = None) -> RetryingStore:
    settings = settings or get_settings()
    inner: KeyValueStore
    if settings.STORAGE_DIR:
        inner = FileStore(settings.STORAGE_DIR)
    else:
        inner = MemoryStore()
    return RetryingStore(inner, retries=settings.STORAGE_RETRIES)


_store: Optional[RetryingStore] = None


def get_store() -> RetryingStore:
    """Process-wide store singleton."""
    global _store
    if _store is None:
        _store = build_store()
    return _store
