"""Snippet persistence across a metadata store and a content blob store.

The two stores share no transaction, so every operation follows a fixed write
order that limits partial failures to orphaned blobs:

* create and content updates write the blob before the metadata record;
* delete marks the record DELETING before the blob is removed.

Orphans and records stuck in DELETING are cleaned up by
:class:`snippetstore.reconcile.Reconciler`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from .config import RepositoryConfig
from .exceptions import (
    BlobNotFoundError,
    ConflictError,
    ConsistencyViolationError,
    InvalidSnippetError,
    RecordNotFoundError,
    SnippetNotFoundError,
    SnippetStoreError,
    StoreUnavailableError,
    VersionMismatchError,
)
from .snippet.keys import new_content_key, new_snippet_id
from .snippet.model import (
    STATUS_ACTIVE,
    STATUS_DELETING,
    STATUS_TOMBSTONED,
    Snippet,
    SnippetPage,
    SnippetRecord,
    ensure_bytes,
    normalize_tags,
    normalize_title,
    utcnow,
)
from .storage.base import ContentBlobStore, MetadataStore, RetiredBlobQueue

logger = logging.getLogger("snippetstore")

T = TypeVar("T")


async def call_store(awaitable: Awaitable[T], *, timeout: float | None, operation: str) -> T:
    """Await a store call, turning a timeout into StoreUnavailableError."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise StoreUnavailableError(f"{operation} timed out after {timeout}s") from exc


async def tombstone(
    metadata: MetadataStore,
    blobs: ContentBlobStore,
    record: SnippetRecord,
    *,
    now: datetime,
    timeout: float | None = None,
) -> SnippetRecord | None:
    """Remove the blob of a DELETING record and mark the record TOMBSTONED.

    A blob that is already gone counts as deleted. Returns None when the record
    moved past ``record.version`` in the meantime (another pass finished it).
    Blob store failures propagate so the caller can decide whether to retry.
    """
    if record.content_key:
        try:
            await call_store(
                blobs.delete(record.content_key), timeout=timeout, operation="blob delete"
            )
        except BlobNotFoundError:
            logger.debug("Blob %s of snippet %s already removed", record.content_key, record.id)

    try:
        return await call_store(
            metadata.conditional_update(
                record.id,
                record.version,
                {"status": STATUS_TOMBSTONED, "content_key": None, "updated_at": now},
            ),
            timeout=timeout,
            operation="metadata update",
        )
    except VersionMismatchError:
        logger.debug("Snippet %s changed while tombstoning; leaving it to the newer writer", record.id)
        return None


class SnippetRepository:
    """Create, read, update, delete and list snippets.

    The repository holds no locks. Concurrent writers are serialized by the
    metadata store's version check, and a lost race surfaces as
    :class:`ConflictError` for the caller to resolve.
    """

    def __init__(
        self,
        metadata: MetadataStore,
        blobs: ContentBlobStore,
        *,
        retired_blobs: RetiredBlobQueue,
        config: RepositoryConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.metadata = metadata
        self.blobs = blobs
        self.retired_blobs = retired_blobs
        self.config = config
        self._clock = clock

    async def create(
        self,
        owner_id: str,
        title: str,
        content: bytes,
        *,
        tags: Iterable[str] | None = None,
        description: str | None = None,
        language: str | None = None,
    ) -> Snippet:
        if not owner_id or not owner_id.strip():
            raise InvalidSnippetError("owner_id is required")
        cleaned_title = normalize_title(title)
        cleaned_tags = normalize_tags(tags)
        data = ensure_bytes(content)

        snippet_id = new_snippet_id()
        content_key = new_content_key(owner_id, snippet_id)

        # Nothing references the key yet, so a failure here leaves no trace.
        await self._call(self.blobs.put(content_key, data), "blob put")

        now = self._clock()
        record = SnippetRecord(
            id=snippet_id,
            owner_id=owner_id,
            title=cleaned_title,
            description=description,
            language=language,
            tags=cleaned_tags,
            content_key=content_key,
            status=STATUS_ACTIVE,
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._call(self.metadata.insert(record), "metadata insert")
        except (SnippetStoreError, asyncio.CancelledError):
            logger.warning(
                "Insert of snippet %s failed; blob %s left for the orphan sweep",
                snippet_id,
                content_key,
            )
            raise

        logger.info("Created snippet %s for owner %s", snippet_id, owner_id)
        return Snippet.from_record(record, data)

    async def read(self, snippet_id: str) -> Snippet:
        """Return an ACTIVE snippet with its content.

        A missing blob is re-checked against fresh metadata: while the record
        keeps moving on (new content or deletion) the read follows it. If the
        record still names the missing blob, ConsistencyViolationError is raised.
        """
        record = await self._get_active(snippet_id)
        while True:
            content_key = record.content_key
            if content_key:
                try:
                    content = await self._call(self.blobs.get(content_key), "blob get")
                except BlobNotFoundError:
                    pass
                else:
                    return Snippet.from_record(record, content)

            latest = await self._get_active(snippet_id)
            if latest.content_key == content_key:
                logger.error(
                    "Consistency violation: snippet %s is ACTIVE at version %d but blob %s is missing",
                    snippet_id,
                    latest.version,
                    content_key,
                )
                raise ConsistencyViolationError(snippet_id, content_key or "<none>")
            logger.debug("Snippet %s changed during read; retrying with version %d", snippet_id, latest.version)
            record = latest

    async def update(
        self,
        snippet_id: str,
        expected_version: int,
        *,
        title: str | None = None,
        tags: Iterable[str] | None = None,
        description: str | None = None,
        language: str | None = None,
        content: bytes | None = None,
    ) -> Snippet:
        """Apply metadata and/or content changes if ``expected_version`` is current.

        Fields left as None are unchanged. The returned view carries content
        only when new content was supplied.
        """
        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = normalize_title(title)
        if tags is not None:
            changes["tags"] = normalize_tags(tags)
        if description is not None:
            changes["description"] = description
        if language is not None:
            changes["language"] = language
        data = ensure_bytes(content) if content is not None else None
        if not changes and data is None:
            raise InvalidSnippetError("Update requires at least one changed field")

        current = await self._get_active(snippet_id)
        if current.version != expected_version:
            raise ConflictError(snippet_id, expected_version, current.version)

        new_key: str | None = None
        if data is not None:
            new_key = new_content_key(current.owner_id, snippet_id)
            await self._call(self.blobs.put(new_key, data), "blob put")
            changes["content_key"] = new_key
        changes["updated_at"] = self._clock()

        try:
            updated = await self._call(
                self.metadata.conditional_update(snippet_id, expected_version, changes),
                "metadata update",
            )
        except VersionMismatchError as exc:
            if new_key is not None:
                await self._retire(new_key)
            raise ConflictError(snippet_id, expected_version, exc.actual) from exc
        except RecordNotFoundError:
            if new_key is not None:
                await self._retire(new_key)
            raise SnippetNotFoundError(snippet_id) from None

        if new_key is not None and current.content_key and current.content_key != new_key:
            await self._retire(current.content_key)

        logger.info("Updated snippet %s to version %d", snippet_id, updated.version)
        return Snippet.from_record(updated, data)

    async def delete(self, snippet_id: str, expected_version: int) -> None:
        current = await self._get_active(snippet_id)
        if current.version != expected_version:
            raise ConflictError(snippet_id, expected_version, current.version)

        try:
            marked = await self._call(
                self.metadata.conditional_update(
                    snippet_id,
                    expected_version,
                    {"status": STATUS_DELETING, "updated_at": self._clock()},
                ),
                "metadata update",
            )
        except VersionMismatchError as exc:
            latest = await self._get_active(snippet_id)
            raise ConflictError(snippet_id, expected_version, latest.version) from exc
        except RecordNotFoundError:
            raise SnippetNotFoundError(snippet_id) from None

        logger.info("Snippet %s marked %s", snippet_id, STATUS_DELETING)

        # The caller's delete has succeeded from here on; leftovers go to reconciliation.
        try:
            finished = await tombstone(
                self.metadata,
                self.blobs,
                marked,
                now=self._clock(),
                timeout=self.config.operation_timeout,
            )
        except SnippetStoreError as exc:
            logger.warning(
                "Snippet %s left in %s for reconciliation: %s", snippet_id, STATUS_DELETING, exc
            )
            return
        if finished is not None:
            logger.info("Snippet %s tombstoned", snippet_id)

    async def list_snippets(
        self,
        owner_id: str,
        cursor: str | None = None,
        *,
        limit: int | None = None,
    ) -> SnippetPage:
        """List the owner's ACTIVE snippets, without content.

        Records in other states are filtered out after paging, so a page can
        hold fewer than ``limit`` snippets while ``next_cursor`` is still set.
        """
        page = await self._call(
            self.metadata.list_by_owner(owner_id, cursor, limit=limit or self.config.page_size),
            "metadata list",
        )
        snippets = [
            Snippet.from_record(record) for record in page.records if record.status == STATUS_ACTIVE
        ]
        return SnippetPage(snippets=snippets, next_cursor=page.next_cursor)

    async def _get_active(self, snippet_id: str) -> SnippetRecord:
        try:
            record = await self._call(self.metadata.get(snippet_id), "metadata get")
        except RecordNotFoundError:
            raise SnippetNotFoundError(snippet_id) from None
        if record.status != STATUS_ACTIVE:
            raise SnippetNotFoundError(snippet_id)
        return record

    async def _retire(self, content_key: str) -> None:
        try:
            await self._call(self.retired_blobs.push(content_key), "retire blob")
        except SnippetStoreError as exc:
            logger.warning("Could not queue blob %s for deletion; the orphan sweep will collect it: %s", content_key, exc)

    async def _call(self, awaitable: Awaitable[T], operation: str) -> T:
        return await call_store(awaitable, timeout=self.config.operation_timeout, operation=operation)


__all__ = ["SnippetRepository", "call_store", "tombstone"]
