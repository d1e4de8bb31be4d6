"""Persistence of analyzer states per partition key.

A snapshot maps metric keys to encoded state envelopes (see
``dqengine.metrics.codec``) plus free-form metadata. Stores persist
envelopes verbatim, so keys written by a newer version of the engine are
retained on load even if this process cannot decode them.

Writers that read, modify and write back a key must hold ``lock(key)``.
Locks are per key: writes to different keys never wait on each other.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from pydantic import BaseModel, Field, ValidationError

from dqengine.core.config import Settings, get_settings
from dqengine.core.errors import StoreCorruptionError, StoreError
from dqengine.core.logging import get_logger, increment_store_read, increment_store_write

logger = get_logger(__name__)


class StateSnapshot(BaseModel):
    """Encoded states of one partition key."""

    states: dict[str, dict[str, Any]] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class KeyedLocks:
    """One asyncio.Lock per key, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class StateStore(ABC):
    """Save/load/list/delete contract over partition keys."""

    def __init__(self) -> None:
        self._locks = KeyedLocks()

    def lock(self, key: str) -> asyncio.Lock:
        """Exclusive lock for read-modify-write of ``key``."""
        return self._locks(key)

    @abstractmethod
    async def save_state(self, key: str, snapshot: StateSnapshot) -> None:
        """Persist a snapshot, replacing any previous one.

        Raises:
            StoreError: the write did not happen
        """

    @abstractmethod
    async def load_state(self, key: str) -> StateSnapshot | None:
        """Load a snapshot, or None when the key was never saved.

        Raises:
            StoreError: the store could not be read
            StoreCorruptionError: data exists but cannot be decoded
        """

    @abstractmethod
    async def list_partitions(self, prefix: str = "") -> list[str]:
        """Sorted keys, optionally restricted to a prefix."""

    @abstractmethod
    async def delete_state(self, key: str) -> None:
        """Remove a key. Deleting a missing key is a no-op."""


def _decode_snapshot(key: str, data: str | bytes) -> StateSnapshot:
    try:
        return StateSnapshot.model_validate_json(data)
    except ValidationError as e:
        raise StoreCorruptionError(f"Corrupt state for {key}: {e}", partition_key=key) from e


class InMemoryStateStore(StateStore):
    """Process-local store. Snapshots are kept serialized so callers never share objects."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, str] = {}

    async def save_state(self, key: str, snapshot: StateSnapshot) -> None:
        self._data[key] = snapshot.model_dump_json()
        increment_store_write()

    async def load_state(self, key: str) -> StateSnapshot | None:
        increment_store_read()
        data = self._data.get(key)
        return None if data is None else _decode_snapshot(key, data)

    async def list_partitions(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))

    async def delete_state(self, key: str) -> None:
        self._data.pop(key, None)


class FileSystemStateStore(StateStore):
    """One JSON document per key under ``root``.

    Keys are percent-encoded into file names. Writes go to a temporary file
    that is atomically renamed over the target, so a crash never leaves a
    half-written snapshot behind.
    """

    SUFFIX = ".json"

    def __init__(self, root: Path | str):
        super().__init__()
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create state directory {self.root}: {e}") from e

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> FileSystemStateStore:
        return cls((settings or get_settings()).state_directory)

    def _path(self, key: str) -> Path:
        return self.root / (quote(key, safe="") + self.SUFFIX)

    async def save_state(self, key: str, snapshot: StateSnapshot) -> None:
        payload = snapshot.model_dump_json()
        try:
            await asyncio.to_thread(self._write_atomic, self._path(key), payload)
        except OSError as e:
            logger.error("state_save_failed", key=key, error=str(e))
            raise StoreError(f"Failed to save state {key}: {e}", partition_key=key) from e
        increment_store_write()

    def _write_atomic(self, path: Path, payload: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=self.SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def load_state(self, key: str) -> StateSnapshot | None:
        path = self._path(key)
        try:
            data = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Failed to load state {key}: {e}", partition_key=key) from e
        increment_store_read()
        return _decode_snapshot(key, data)

    async def list_partitions(self, prefix: str = "") -> list[str]:
        try:
            names = await asyncio.to_thread(os.listdir, self.root)
        except OSError as e:
            raise StoreError(f"Failed to list {self.root}: {e}") from e
        keys = (
            unquote(name[: -len(self.SUFFIX)])
            for name in names
            if name.endswith(self.SUFFIX) and not name.startswith(".tmp-")
        )
        return sorted(key for key in keys if key.startswith(prefix))

    async def delete_state(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._path(key).unlink, missing_ok=True)
        except OSError as e:
            raise StoreError(f"Failed to delete state {key}: {e}", partition_key=key) from e
