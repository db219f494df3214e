"""FastAPI routes for snippet CRUD and reconciliation."""

from __future__ import annotations

import redis
from fastapi import APIRouter, Depends, Query, Request, Response, status
from rq import Queue

from ..bootstrap import build_repository, build_stores, create_async_redis
from ..config import ServiceSettings
from ..reconcile.queue import QueueConfig, create_queue
from ..repository import SnippetRepository
from .model import (
    ReconcileJobResponse,
    SnippetCreateRequest,
    SnippetListResponse,
    SnippetResponse,
    SnippetUpdateRequest,
)
from .service import (
    create_snippet_service,
    delete_snippet_service,
    enqueue_reconcile_service,
    get_snippet_service,
    list_snippets_service,
    update_snippet_service,
)


def get_settings(request: Request) -> ServiceSettings:
    settings = getattr(request.app.state, "settings", None)
    if not isinstance(settings, ServiceSettings):
        raise RuntimeError("Service settings have not been initialised")
    return settings


def get_repository(
    request: Request,
    settings: ServiceSettings = Depends(get_settings),
) -> SnippetRepository:
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        redis_client = create_async_redis(settings.redis_url)
        request.app.state.async_redis = redis_client
        repository = build_repository(settings, build_stores(settings, redis_client))
        request.app.state.repository = repository
    return repository


def get_queue(
    request: Request,
    settings: ServiceSettings = Depends(get_settings),
) -> Queue:
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        queue_config = QueueConfig.from_settings(settings)
        redis_client = getattr(request.app.state, "redis_client", None)
        if redis_client is None:
            redis_client = redis.Redis.from_url(settings.redis_url)
            request.app.state.redis_client = redis_client
        queue = create_queue(queue_config, connection=redis_client)
        request.app.state.queue = queue
    return queue


router = APIRouter()


@router.post("/snippets", response_model=SnippetResponse, status_code=status.HTTP_201_CREATED)
async def create_snippet(
    payload: SnippetCreateRequest,
    repository: SnippetRepository = Depends(get_repository),
) -> SnippetResponse:
    return await create_snippet_service(payload, repository)


@router.get("/snippets/{snippet_id}", response_model=SnippetResponse)
async def get_snippet(
    snippet_id: str,
    repository: SnippetRepository = Depends(get_repository),
) -> SnippetResponse:
    return await get_snippet_service(snippet_id, repository)


@router.patch("/snippets/{snippet_id}", response_model=SnippetResponse)
async def update_snippet(
    snippet_id: str,
    payload: SnippetUpdateRequest,
    repository: SnippetRepository = Depends(get_repository),
) -> SnippetResponse:
    return await update_snippet_service(snippet_id, payload, repository)


@router.delete("/snippets/{snippet_id}", response_class=Response)
async def delete_snippet(
    snippet_id: str,
    expected_version: int = Query(..., ge=1, description="Version the caller last read"),
    repository: SnippetRepository = Depends(get_repository),
) -> Response:
    """Delete a snippet. The blob is removed now or by the next reconciliation pass."""

    await delete_snippet_service(snippet_id, expected_version, repository)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/owners/{owner_id}/snippets", response_model=SnippetListResponse)
async def list_snippets(
    owner_id: str,
    cursor: str | None = Query(None, description="Cursor returned by the previous page"),
    limit: int | None = Query(None, ge=1, le=200, description="Maximum snippets per page"),
    repository: SnippetRepository = Depends(get_repository),
) -> SnippetListResponse:
    return await list_snippets_service(owner_id, repository, cursor=cursor, limit=limit)


@router.post("/reconcile", response_model=ReconcileJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_reconcile(
    queue: Queue = Depends(get_queue),
    settings: ServiceSettings = Depends(get_settings),
) -> ReconcileJobResponse:
    return enqueue_reconcile_service(queue, result_ttl=settings.queue_result_ttl)


__all__ = ["router"]
