"""
Persistent key-value storage backends.

The vault core only talks to storage through :class:`AbstractStorage`:
``get``, ``set``, ``remove`` and ``clear`` coroutines over JSON-compatible
values. ``set_many`` writes several keys in one call; backends that can do so
make it atomic (rotation commits the new salt, vault blob and wrapped key
through it).
"""
import os
import asyncio
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union
from collections.abc import Mapping

import orjson

logger = logging.getLogger("passcommit.storage")


class AbstractStorage(ABC):
    """Asynchronous key-value store contract."""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    async def set_many(self, values: Mapping[str, Any]) -> None:
        """Write several keys, in order. Not atomic unless overridden."""
        for key, value in values.items():
            await self.set(key, value)


class MemoryStorage(AbstractStorage):
    """In-process storage, mostly useful for tests and ephemeral vaults."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None) -> None:
        self._data: dict[str, Any] = dict(data or {})

    def __repr__(self) -> str:
        return f'<MemoryStorage keys={sorted(self._data.keys())}>'

    async def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    async def set_many(self, values: Mapping[str, Any]) -> None:
        self._data.update(values)


class FileStorage(AbstractStorage):
    """Single JSON document on disk.

    Every write replaces the whole file through a temporary file and
    ``os.replace``, so a crash leaves either the old or the new document.
    File I/O runs in a worker thread; writers are serialized by a lock.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()
        self._cache: Optional[dict[str, Any]] = None

    def __repr__(self) -> str:
        return f'<FileStorage path={str(self.path)!r}>'

    def _read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        raw = self.path.read_bytes()
        if not raw:
            return {}
        data = orjson.loads(raw)
        if not isinstance(data, dict):
            raise RuntimeError(
                f"Storage file {self.path} does not contain a JSON object"
            )
        return data

    def _write_file(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            prefix=f".{self.path.name}.", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(orjson.dumps(data))
                fp.flush()
                os.fsync(fp.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    async def _load(self) -> dict[str, Any]:
        if self._cache is None:
            self._cache = await asyncio.to_thread(self._read_file)
        return self._cache

    async def _commit(self, data: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_file, data)
        self._cache = data

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._lock:
            data = await self._load()
            return data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: Mapping[str, Any]) -> None:
        async with self._lock:
            data = dict(await self._load())
            data.update(values)
            await self._commit(data)
        logger.debug("Storage write: keys=%s", sorted(values.keys()))

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if key not in data:
                return
            data = dict(data)
            del data[key]
            await self._commit(data)
        logger.debug("Storage remove: key=%s", key)

    async def clear(self) -> None:
        async with self._lock:
            await self._commit({})
        logger.debug("Storage cleared: %s", self.path)
