"""Interfaces the repository consumes, plus paging helpers shared by adapters."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, List, Mapping, Protocol, Sequence, Tuple

from ..exceptions import InvalidCursorError
from ..snippet.model import SnippetRecord


@dataclass(frozen=True, slots=True)
class BlobInfo:
    key: str
    last_modified: datetime


@dataclass(frozen=True, slots=True)
class Page:
    """One page of records and the cursor to resume after it (None at the end)."""

    records: List[SnippetRecord]
    next_cursor: str | None = None


class ContentBlobStore(Protocol):
    """Key-addressed bytes. Keys are opaque and generated by the repository."""

    async def put(self, key: str, data: bytes) -> None: ...

    async def get(self, key: str) -> bytes:
        """Raise BlobNotFoundError when ``key`` is absent."""
        ...

    async def delete(self, key: str) -> None:
        """Raise BlobNotFoundError when ``key`` is already absent."""
        ...

    def iter_blobs(self) -> AsyncIterator[BlobInfo]:
        """Yield every stored blob. Used by the orphan sweep only."""
        ...


class MetadataStore(Protocol):
    """Snippet record store with insert-if-absent and versioned updates."""

    async def insert(self, record: SnippetRecord) -> None: ...

    async def get(self, snippet_id: str) -> SnippetRecord: ...

    async def conditional_update(
        self,
        snippet_id: str,
        expected_version: int,
        changes: Mapping[str, Any],
    ) -> SnippetRecord: ...

    async def list_by_owner(
        self, owner_id: str, cursor: str | None = None, *, limit: int
    ) -> Page: ...

    async def scan_by_status(
        self, status: str, cursor: str | None = None, *, limit: int
    ) -> Page: ...


class RetiredBlobQueue(Protocol):
    """Content keys replaced by an update, waiting for reconciliation to delete them."""

    async def push(self, key: str) -> None: ...

    async def pop_batch(self, limit: int) -> List[str]: ...


# Cursors ---------------------------------------------------------------------

CursorPosition = Tuple[float, str]


def encode_cursor(score: float, snippet_id: str) -> str:
    raw = json.dumps([score, snippet_id], separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str | None) -> CursorPosition | None:
    if cursor is None:
        return None
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        score, snippet_id = json.loads(raw)
    except (binascii.Error, UnicodeError, ValueError, TypeError) as exc:
        raise InvalidCursorError(f"Malformed cursor: {cursor!r}") from exc
    if not isinstance(score, (int, float)) or not isinstance(snippet_id, str):
        raise InvalidCursorError(f"Malformed cursor: {cursor!r}")
    return float(score), snippet_id


def paginate(
    ordered: Sequence[SnippetRecord],
    position: CursorPosition | None,
    limit: int,
) -> Page:
    """Cut a page out of records already sorted by ``(sort_score, id)``."""
    if limit <= 0:
        raise ValueError("Page limit must be positive")
    if position is not None:
        ordered = [record for record in ordered if (record.sort_score, record.id) > position]
    records = list(ordered[:limit])
    next_cursor = None
    if len(ordered) > limit:
        last = records[-1]
        next_cursor = encode_cursor(last.sort_score, last.id)
    return Page(records=records, next_cursor=next_cursor)


__all__ = [
    "BlobInfo",
    "ContentBlobStore",
    "MetadataStore",
    "Page",
    "RetiredBlobQueue",
    "decode_cursor",
    "encode_cursor",
    "paginate",
]
