"""Blob store on the local filesystem.

Writes go to a temporary sibling file that is fsynced and then renamed into
place, and the directory is fsynced after the rename. A reader never sees a
partially written blob, and a blob survives a power loss once put returns.
Deleting a blob prunes the directories it leaves empty, up to the root.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, List

from ..exceptions import BlobNotFoundError, StoreUnavailableError
from .base import BlobInfo

logger = logging.getLogger("snippetstore")

_TEMP_SUFFIX = ".partial"
_WRITE_ATTEMPTS = 3


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class LocalBlobStore:
    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    async def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(self._write, path, bytes(data))

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None
        except OSError as exc:
            raise StoreUnavailableError(f"Failed to read blob {key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._remove, path)
        except FileNotFoundError:
            raise BlobNotFoundError(key) from None
        except OSError as exc:
            raise StoreUnavailableError(f"Failed to delete blob {key}: {exc}") from exc

    async def iter_blobs(self) -> AsyncIterator[BlobInfo]:
        try:
            infos = await asyncio.to_thread(self._list)
        except OSError as exc:
            raise StoreUnavailableError(f"Failed to list blobs under {self.root}: {exc}") from exc
        for info in infos:
            yield info

    def _path_for(self, key: str) -> Path:
        parts = key.split("/")
        if not key or any(part in ("", ".", "..") for part in parts) or key.endswith(_TEMP_SUFFIX):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*parts)

    def _write(self, path: Path, data: bytes) -> None:
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}{_TEMP_SUFFIX}")
        try:
            created = self._write_temp(tmp_path, data)
            os.replace(tmp_path, path)
            _fsync_dir(path.parent)
            for directory in created:
                _fsync_dir(directory.parent)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StoreUnavailableError(f"Failed to write blob {path}: {exc}") from exc

    def _write_temp(self, tmp_path: Path, data: bytes) -> List[Path]:
        # A concurrent delete may prune the directory between mkdir and open.
        for attempt in range(_WRITE_ATTEMPTS):
            created = self._make_parents(tmp_path.parent)
            try:
                with open(tmp_path, "wb") as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                return created
            except FileNotFoundError:
                if attempt == _WRITE_ATTEMPTS - 1:
                    raise
                logger.debug("Directory %s vanished before write; recreating", tmp_path.parent)
        return []

    def _make_parents(self, directory: Path) -> List[Path]:
        missing: List[Path] = []
        current = directory
        while not current.exists():
            missing.append(current)
            if current == self.root:
                break
            current = current.parent
        directory.mkdir(parents=True, exist_ok=True)
        return list(reversed(missing))

    def _remove(self, path: Path) -> None:
        path.unlink()
        parent = path.parent
        while parent != self.root:
            try:
                parent.rmdir()
            except OSError:
                # Not empty, or already gone.
                break
            parent = parent.parent

    def _list(self) -> List[BlobInfo]:
        if not self.root.exists():
            return []
        infos: List[BlobInfo] = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(_TEMP_SUFFIX):
                continue
            try:
                mtime = path.stat().st_mtime
            except FileNotFoundError:
                logger.debug("Blob %s vanished while listing", path)
                continue
            infos.append(
                BlobInfo(
                    key=path.relative_to(self.root).as_posix(),
                    last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
                )
            )
        return infos


__all__ = ["LocalBlobStore"]
