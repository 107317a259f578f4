"""Read-only view of the origin's media directory tree."""

from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import AsyncIterator, Optional

import structlog

from ..common.keys import ObjectKey, resolve_under


LOGGER = structlog.get_logger("mediacdn.origin.content")

CHUNK_SIZE = 64 * 1024
GENERIC_MEDIA_TYPES = {"application/octet-stream", "inode/x-empty", "application/x-empty"}


class DirectoryMissing(LookupError):
    """The directory being enumerated does not exist."""


def list_subdirectories(directory: Path) -> list[str]:
    if not directory.is_dir():
        raise DirectoryMissing(str(directory))
    return sorted(entry.name for entry in directory.iterdir() if entry.is_dir() and not entry.name.startswith("."))


def list_regular_files(directory: Path) -> list[str]:
    if not directory.is_dir():
        raise DirectoryMissing(str(directory))
    return sorted(entry.name for entry in directory.iterdir() if entry.is_file() and not entry.name.startswith("."))


def sniff_media_type(path: Path) -> Optional[str]:
    """Detect the media type of ``path`` from its leading bytes, refined by its extension.

    Returns ``None`` when neither the content nor the name identifies a type.
    """
    import magic

    try:
        detected = magic.from_file(str(path), mime=True)
    except (magic.MagicException, OSError) as exc:
        LOGGER.warning("media_type_detection_failed", path=str(path), error=str(exc))
        detected = None

    if detected and detected not in GENERIC_MEDIA_TYPES:
        return detected
    guessed, _ = mimetypes.guess_type(path.name, strict=False)
    if guessed:
        return guessed
    if detected:
        return "application/octet-stream"
    return None


class ContentRoot:
    def __init__(self, root: Path) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def series(self) -> list[str]:
        return list_subdirectories(self._root)

    def types(self, series: str) -> list[str]:
        return list_subdirectories(resolve_under(self._root, series))

    def files(self, series: str, type_: str) -> list[str]:
        return list_regular_files(resolve_under(self._root, series, type_))

    def readable_file(self, key: ObjectKey) -> Optional[Path]:
        path = key.storage_path(self._root)
        if not path.is_file():
            return None
        try:
            with path.open("rb"):
                pass
        except OSError:
            return None
        return path


async def iter_file(path: Path) -> AsyncIterator[bytes]:
    with path.open("rb") as handle:
        while True:
            data = await asyncio.to_thread(handle.read, CHUNK_SIZE)
            if not data:
                break
            yield data
