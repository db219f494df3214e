"""Service-layer helpers translating API requests into repository calls."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status
from rq import Queue

from ..exceptions import (
    ConflictError,
    ConsistencyViolationError,
    InvalidCursorError,
    InvalidSnippetError,
    NotFoundError,
    SnippetStoreError,
    StoreUnavailableError,
)
from ..reconcile.worker import enqueue_reconciliation
from ..repository import SnippetRepository
from .model import (
    ReconcileJobResponse,
    SnippetCreateRequest,
    SnippetListResponse,
    SnippetResponse,
    SnippetUpdateRequest,
)

logger = logging.getLogger("snippetstore")


def to_http_error(exc: SnippetStoreError) -> HTTPException:
    """Map a repository error onto the status code callers see."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snippet not found")
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (InvalidSnippetError, InvalidCursorError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, StoreUnavailableError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage temporarily unavailable",
        )
    if isinstance(exc, ConsistencyViolationError):
        logger.error("Consistency violation surfaced to caller: %s", exc)
    else:
        logger.error("Unhandled snippet store error: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal storage error")


async def create_snippet_service(
    payload: SnippetCreateRequest,
    repository: SnippetRepository,
) -> SnippetResponse:
    try:
        snippet = await repository.create(
            payload.owner_id,
            payload.title,
            payload.content.encode("utf-8"),
            tags=payload.tags,
            description=payload.description,
            language=payload.language,
        )
    except SnippetStoreError as exc:
        raise to_http_error(exc) from exc
    return SnippetResponse.from_snippet(snippet)


async def get_snippet_service(snippet_id: str, repository: SnippetRepository) -> SnippetResponse:
    try:
        snippet = await repository.read(snippet_id)
    except SnippetStoreError as exc:
        raise to_http_error(exc) from exc
    return SnippetResponse.from_snippet(snippet)


async def update_snippet_service(
    snippet_id: str,
    payload: SnippetUpdateRequest,
    repository: SnippetRepository,
) -> SnippetResponse:
    content = payload.content.encode("utf-8") if payload.content is not None else None
    try:
        snippet = await repository.update(
            snippet_id,
            payload.expected_version,
            title=payload.title,
            tags=payload.tags,
            description=payload.description,
            language=payload.language,
            content=content,
        )
    except SnippetStoreError as exc:
        raise to_http_error(exc) from exc
    return SnippetResponse.from_snippet(snippet)


async def delete_snippet_service(
    snippet_id: str,
    expected_version: int,
    repository: SnippetRepository,
) -> None:
    try:
        await repository.delete(snippet_id, expected_version)
    except SnippetStoreError as exc:
        raise to_http_error(exc) from exc


async def list_snippets_service(
    owner_id: str,
    repository: SnippetRepository,
    *,
    cursor: str | None = None,
    limit: int | None = None,
) -> SnippetListResponse:
    try:
        page = await repository.list_snippets(owner_id, cursor, limit=limit)
    except SnippetStoreError as exc:
        raise to_http_error(exc) from exc
    return SnippetListResponse(
        owner_id=owner_id,
        snippets=[SnippetResponse.from_snippet(snippet) for snippet in page.snippets],
        next_cursor=page.next_cursor,
    )


def enqueue_reconcile_service(queue: Queue, *, result_ttl: int | None = None) -> ReconcileJobResponse:
    try:
        job = enqueue_reconciliation(queue, result_ttl=result_ttl)
    except Exception as exc:  # pragma: no cover - transport error guard
        logger.exception("Failed to enqueue reconciliation job")
        raise HTTPException(status_code=500, detail="Failed to enqueue reconciliation job") from exc
    return ReconcileJobResponse(job_id=job.id, status="queued")


__all__ = [
    "create_snippet_service",
    "delete_snippet_service",
    "enqueue_reconcile_service",
    "get_snippet_service",
    "list_snippets_service",
    "to_http_error",
    "update_snippet_service",
]
