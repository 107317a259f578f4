"""Filesystem-backed object store for the edge cache."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Union
from uuid import uuid4

import structlog

from ..common.errors import ObjectNotFound, StoreIOError
from ..common.keys import ObjectKey


LOGGER = structlog.get_logger("mediacdn.edge.store")

CHUNK_SIZE = 64 * 1024
TEMP_MARKER = ".tmp-"

Payload = Union[bytes, AsyncIterator[bytes]]


@dataclass(frozen=True)
class StoredObjectInfo:
    size: int
    modified: datetime


class ObjectStream:
    """Open handle on a stored object, iterated in fixed-size chunks."""

    def __init__(self, handle: BinaryIO, info: StoredObjectInfo) -> None:
        self._handle = handle
        self.info = info

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await asyncio.to_thread(self._handle.read, CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            self._handle.close()

    async def read_all(self) -> bytes:
        return b"".join([chunk async for chunk in self])

    def close(self) -> None:
        self._handle.close()


class ObjectStore:
    async def exists(self, key: ObjectKey) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def write(self, key: ObjectKey, data: Payload) -> int:
        raise NotImplementedError

    async def read_stream(self, key: ObjectKey) -> ObjectStream:
        raise NotImplementedError

    async def stat(self, key: ObjectKey) -> StoredObjectInfo:
        raise NotImplementedError

    async def delete(self, key: ObjectKey) -> None:
        raise NotImplementedError

    def status(self) -> dict[str, object]:
        raise NotImplementedError


async def _iter_payload(data: Payload) -> AsyncIterator[bytes]:
    if isinstance(data, (bytes, bytearray, memoryview)):
        yield bytes(data)
        return
    async for chunk in data:
        if chunk:
            yield chunk


def _info_from_stat(result: os.stat_result) -> StoredObjectInfo:
    return StoredObjectInfo(
        size=result.st_size,
        modified=datetime.fromtimestamp(result.st_mtime, tz=timezone.utc),
    )


class LocalObjectStore(ObjectStore):
    """Maps ``series/type/filename`` onto ``root/series/type/filename``.

    Writes land in a hidden sibling temp file and are moved into place with
    ``os.replace``, so a reader only ever sees a complete previous or complete
    new version of an object.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: ObjectKey) -> Path:
        return key.storage_path(self._root)

    async def exists(self, key: ObjectKey) -> bool:
        path = self.path_for(key)
        return await asyncio.to_thread(path.is_file)

    async def write(self, key: ObjectKey, data: Payload) -> int:
        path = self.path_for(key)
        tmp_path = path.parent / f".{path.name}{TEMP_MARKER}{uuid4().hex}"

        def _open() -> BinaryIO:
            path.parent.mkdir(parents=True, exist_ok=True)
            return tmp_path.open("wb")

        def _commit(handle: BinaryIO) -> None:
            handle.flush()
            os.fsync(handle.fileno())
            handle.close()
            os.replace(tmp_path, path)

        size = 0
        try:
            handle = await asyncio.to_thread(_open)
            try:
                async for chunk in _iter_payload(data):
                    await asyncio.to_thread(handle.write, chunk)
                    size += len(chunk)
                await asyncio.to_thread(_commit, handle)
            finally:
                handle.close()
        except OSError as exc:
            LOGGER.warning("store_write_failed", cache_key=key.cache_key, error=str(exc))
            raise StoreIOError(f"Failed to write {key.cache_key}: {exc}") from exc
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
        LOGGER.debug("store_write", cache_key=key.cache_key, bytes=size)
        return size

    async def read_stream(self, key: ObjectKey) -> ObjectStream:
        path = self.path_for(key)

        def _open() -> ObjectStream:
            if not path.is_file():
                raise ObjectNotFound(f"{key.cache_key} is not cached")
            handle = path.open("rb")
            return ObjectStream(handle, _info_from_stat(os.fstat(handle.fileno())))

        try:
            return await asyncio.to_thread(_open)
        except FileNotFoundError as exc:
            raise ObjectNotFound(f"{key.cache_key} is not cached") from exc
        except OSError as exc:
            raise StoreIOError(f"Failed to read {key.cache_key}: {exc}") from exc

    async def stat(self, key: ObjectKey) -> StoredObjectInfo:
        path = self.path_for(key)

        def _stat() -> StoredObjectInfo:
            if not path.is_file():
                raise ObjectNotFound(f"{key.cache_key} is not cached")
            return _info_from_stat(path.stat())

        try:
            return await asyncio.to_thread(_stat)
        except FileNotFoundError as exc:
            raise ObjectNotFound(f"{key.cache_key} is not cached") from exc
        except OSError as exc:
            raise StoreIOError(f"Failed to stat {key.cache_key}: {exc}") from exc

    async def delete(self, key: ObjectKey) -> None:
        path = self.path_for(key)

        def _delete() -> None:
            if not path.is_file():
                raise ObjectNotFound(f"{key.cache_key} is not cached")
            path.unlink()

        try:
            await asyncio.to_thread(_delete)
        except FileNotFoundError as exc:
            raise ObjectNotFound(f"{key.cache_key} is not cached") from exc
        except OSError as exc:
            raise StoreIOError(f"Failed to delete {key.cache_key}: {exc}") from exc

    def status(self) -> dict[str, object]:
        storage = self._root
        storage.mkdir(parents=True, exist_ok=True)
        return {
            "backend": "local",
            "storage_path": str(storage),
            "writable": storage.exists() and os.access(storage, os.W_OK),
        }
