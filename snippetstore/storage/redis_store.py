"""Redis-backed metadata, blob and retired-key stores.

The client must be a ``redis.asyncio.Redis`` created with
``decode_responses=False`` so blob payloads come back as raw bytes.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterator, List, Mapping

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from ..exceptions import (
    AlreadyExistsError,
    BlobNotFoundError,
    RecordNotFoundError,
    StoreUnavailableError,
    VersionMismatchError,
)
from ..snippet.model import SnippetRecord, utcnow
from .base import BlobInfo, CursorPosition, Page, decode_cursor, encode_cursor

logger = logging.getLogger("snippetstore")

_SCAN_BATCH = 100


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        # WatchError is handled inside the pipelines.
        raise StoreUnavailableError(f"Redis failed during {operation}: {type(exc).__name__}: {exc}") from exc


def _decode(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisMetadataStore:
    """Snippet records as JSON strings with sorted-set indexes by owner and status.

    Both indexes are scored by creation time, so members with the same score
    fall back to id order and pages come out ordered by ``(created_at, id)``.
    """

    KEY_PREFIX = "snippets:record:"
    OWNER_INDEX_PREFIX = "snippets:owner:"
    STATUS_INDEX_PREFIX = "snippets:status:"

    def __init__(self, redis_client: redis.Redis) -> None:
        self.redis = redis_client

    async def insert(self, record: SnippetRecord) -> None:
        key = self._record_key(record.id)
        with _translate_errors("insert"):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if await pipe.exists(key):
                        raise AlreadyExistsError(record.id)
                    pipe.multi()
                    pipe.set(key, self._serialize(record))
                    pipe.zadd(self._owner_key(record.owner_id), {record.id: record.sort_score})
                    pipe.zadd(self._status_key(record.status), {record.id: record.sort_score})
                    await pipe.execute()
                except WatchError as exc:
                    raise AlreadyExistsError(record.id) from exc

    async def get(self, snippet_id: str) -> SnippetRecord:
        with _translate_errors("get"):
            raw = await self.redis.get(self._record_key(snippet_id))
        if raw is None:
            raise RecordNotFoundError(snippet_id)
        return self._deserialize(raw)

    async def conditional_update(
        self,
        snippet_id: str,
        expected_version: int,
        changes: Mapping[str, Any],
    ) -> SnippetRecord:
        key = self._record_key(snippet_id)
        with _translate_errors("conditional_update"):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise RecordNotFoundError(snippet_id)
                    current = self._deserialize(raw)
                    if current.version != expected_version:
                        raise VersionMismatchError(snippet_id, expected_version, current.version)
                    updated = current.with_changes(changes)

                    pipe.multi()
                    pipe.set(key, self._serialize(updated))
                    if updated.status != current.status:
                        pipe.zrem(self._status_key(current.status), snippet_id)
                        pipe.zadd(self._status_key(updated.status), {snippet_id: updated.sort_score})
                    await pipe.execute()
                except WatchError as exc:
                    # Someone wrote the record between WATCH and EXEC.
                    logger.debug("Concurrent write on %s during conditional update", snippet_id)
                    raise VersionMismatchError(snippet_id, expected_version) from exc
        return updated

    async def list_by_owner(
        self, owner_id: str, cursor: str | None = None, *, limit: int
    ) -> Page:
        return await self._page(self._owner_key(owner_id), decode_cursor(cursor), limit)

    async def scan_by_status(
        self, status: str, cursor: str | None = None, *, limit: int
    ) -> Page:
        return await self._page(self._status_key(status), decode_cursor(cursor), limit)

    async def _page(self, index_key: str, position: CursorPosition | None, limit: int) -> Page:
        if limit <= 0:
            raise ValueError("Page limit must be positive")

        min_score: float | str = "-inf" if position is None else position[0]
        members: List[tuple[str, float]] = []
        offset = 0
        with _translate_errors("scan"):
            while len(members) <= limit:
                batch = await self.redis.zrangebyscore(
                    index_key,
                    min_score,
                    "+inf",
                    start=offset,
                    num=_SCAN_BATCH,
                    withscores=True,
                )
                if not batch:
                    break
                offset += len(batch)
                for raw_member, score in batch:
                    member = _decode(raw_member)
                    if position is not None and (float(score), member) <= position:
                        continue
                    members.append((member, float(score)))

            window = members[: limit + 1]
            raw_records = []
            if window:
                raw_records = await self.redis.mget(
                    [self._record_key(member) for member, _ in window[:limit]]
                )

        records = [self._deserialize(raw) for raw in raw_records if raw is not None]
        next_cursor = None
        if len(window) > limit:
            last_id, last_score = window[limit - 1]
            next_cursor = encode_cursor(last_score, last_id)
        return Page(records=records, next_cursor=next_cursor)

    def _record_key(self, snippet_id: str) -> str:
        return f"{self.KEY_PREFIX}{snippet_id}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self.OWNER_INDEX_PREFIX}{owner_id}"

    def _status_key(self, status: str) -> str:
        return f"{self.STATUS_INDEX_PREFIX}{status}"

    @staticmethod
    def _serialize(record: SnippetRecord) -> str:
        return json.dumps(record.to_dict(), separators=(",", ":"))

    @staticmethod
    def _deserialize(raw: Any) -> SnippetRecord:
        return SnippetRecord.from_dict(json.loads(_decode(raw)))


class RedisBlobStore:
    """Blob payloads as plain Redis values plus a write-time index for the orphan sweep."""

    KEY_PREFIX = "snippets:blob:"
    INDEX_KEY = "snippets:blobs"

    def __init__(
        self,
        redis_client: redis.Redis,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.redis = redis_client
        self._clock = clock

    async def put(self, key: str, data: bytes) -> None:
        with _translate_errors("blob put"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._blob_key(key), bytes(data))
                pipe.zadd(self.INDEX_KEY, {key: self._clock().timestamp()})
                await pipe.execute()

    async def get(self, key: str) -> bytes:
        with _translate_errors("blob get"):
            data = await self.redis.get(self._blob_key(key))
        if data is None:
            raise BlobNotFoundError(key)
        return bytes(data)

    async def delete(self, key: str) -> None:
        with _translate_errors("blob delete"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._blob_key(key))
                pipe.zrem(self.INDEX_KEY, key)
                removed, _ = await pipe.execute()
        if not removed:
            raise BlobNotFoundError(key)

    async def iter_blobs(self) -> AsyncIterator[BlobInfo]:
        with _translate_errors("blob scan"):
            async for raw_key, score in self.redis.zscan_iter(self.INDEX_KEY, count=_SCAN_BATCH):
                yield BlobInfo(
                    key=_decode(raw_key),
                    last_modified=datetime.fromtimestamp(float(score), tz=timezone.utc),
                )

    def _blob_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"


class RedisRetiredBlobQueue:
    QUEUE_KEY = "snippets:retired-blobs"

    def __init__(self, redis_client: redis.Redis) -> None:
        self.redis = redis_client

    async def push(self, key: str) -> None:
        with _translate_errors("retire blob"):
            await self.redis.rpush(self.QUEUE_KEY, key)

    async def pop_batch(self, limit: int) -> List[str]:
        with _translate_errors("drain retired blobs"):
            popped = await self.redis.lpop(self.QUEUE_KEY, limit)
        if not popped:
            return []
        return [_decode(item) for item in popped]


__all__ = ["RedisBlobStore", "RedisMetadataStore", "RedisRetiredBlobQueue"]
