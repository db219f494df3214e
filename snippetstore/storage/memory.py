"""In-process store implementations for tests and single-process deployments.

Each method finishes its critical section without awaiting, so under asyncio
the conditional update is atomic without a lock.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Mapping, Tuple

from ..exceptions import (
    AlreadyExistsError,
    BlobNotFoundError,
    RecordNotFoundError,
    VersionMismatchError,
)
from ..snippet.model import SnippetRecord, utcnow
from .base import BlobInfo, Page, decode_cursor, paginate


class MemoryBlobStore:
    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._blobs: Dict[str, Tuple[bytes, datetime]] = {}

    async def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = (bytes(data), self._clock())

    async def get(self, key: str) -> bytes:
        try:
            return self._blobs[key][0]
        except KeyError:
            raise BlobNotFoundError(key) from None

    async def delete(self, key: str) -> None:
        if self._blobs.pop(key, None) is None:
            raise BlobNotFoundError(key)

    async def iter_blobs(self) -> AsyncIterator[BlobInfo]:
        for key, (_, written_at) in list(self._blobs.items()):
            yield BlobInfo(key=key, last_modified=written_at)

    def keys(self) -> List[str]:
        return sorted(self._blobs)

    def __contains__(self, key: object) -> bool:
        return key in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class MemoryMetadataStore:
    def __init__(self) -> None:
        self._records: Dict[str, SnippetRecord] = {}

    async def insert(self, record: SnippetRecord) -> None:
        if record.id in self._records:
            raise AlreadyExistsError(record.id)
        self._records[record.id] = record.copy()

    async def get(self, snippet_id: str) -> SnippetRecord:
        return self._require(snippet_id).copy()

    async def conditional_update(
        self,
        snippet_id: str,
        expected_version: int,
        changes: Mapping[str, Any],
    ) -> SnippetRecord:
        current = self._require(snippet_id)
        if current.version != expected_version:
            raise VersionMismatchError(snippet_id, expected_version, current.version)
        updated = current.with_changes(changes)
        self._records[snippet_id] = updated
        return updated.copy()

    async def list_by_owner(
        self, owner_id: str, cursor: str | None = None, *, limit: int
    ) -> Page:
        position = decode_cursor(cursor)
        matching = [record for record in self._records.values() if record.owner_id == owner_id]
        return self._page(matching, position, limit)

    async def scan_by_status(
        self, status: str, cursor: str | None = None, *, limit: int
    ) -> Page:
        position = decode_cursor(cursor)
        matching = [record for record in self._records.values() if record.status == status]
        return self._page(matching, position, limit)

    def _page(self, records: List[SnippetRecord], position, limit: int) -> Page:
        ordered = sorted(records, key=lambda record: (record.sort_score, record.id))
        page = paginate(ordered, position, limit)
        return Page(records=[record.copy() for record in page.records], next_cursor=page.next_cursor)

    def _require(self, snippet_id: str) -> SnippetRecord:
        record = self._records.get(snippet_id)
        if record is None:
            raise RecordNotFoundError(snippet_id)
        return record

    def __len__(self) -> int:
        return len(self._records)


class MemoryRetiredBlobQueue:
    def __init__(self) -> None:
        self._keys: Deque[str] = deque()

    async def push(self, key: str) -> None:
        self._keys.append(key)

    async def pop_batch(self, limit: int) -> List[str]:
        batch: List[str] = []
        while self._keys and len(batch) < limit:
            batch.append(self._keys.popleft())
        return batch

    def __len__(self) -> int:
        return len(self._keys)


__all__ = ["MemoryBlobStore", "MemoryMetadataStore", "MemoryRetiredBlobQueue"]
