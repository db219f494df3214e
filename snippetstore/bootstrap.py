"""Wire concrete store clients into the repository and the reconciler."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import redis.asyncio as aioredis

from .config import BLOB_BACKEND_FILESYSTEM, ServiceSettings
from .reconcile.reconciler import Reconciler
from .repository import SnippetRepository
from .storage.base import ContentBlobStore, MetadataStore, RetiredBlobQueue
from .storage.filesystem import LocalBlobStore
from .storage.redis_store import RedisBlobStore, RedisMetadataStore, RedisRetiredBlobQueue

logger = logging.getLogger("snippetstore")


@dataclass(slots=True)
class StoreBundle:
    metadata: MetadataStore
    blobs: ContentBlobStore
    retired_blobs: RetiredBlobQueue


def create_async_redis(redis_url: str) -> aioredis.Redis:
    """Instantiate an asyncio Redis client that returns raw bytes."""

    return aioredis.Redis.from_url(redis_url, decode_responses=False)


def build_stores(settings: ServiceSettings, redis_client: aioredis.Redis) -> StoreBundle:
    blobs: ContentBlobStore
    if settings.blob_backend == BLOB_BACKEND_FILESYSTEM:
        if not settings.blob_root:
            raise ValueError("SNIPPETS_BLOB_ROOT is required for the filesystem blob backend")
        blobs = LocalBlobStore(settings.blob_root)
        logger.info("Using filesystem blob store at %s", settings.blob_root)
    else:
        blobs = RedisBlobStore(redis_client)
    return StoreBundle(
        metadata=RedisMetadataStore(redis_client),
        blobs=blobs,
        retired_blobs=RedisRetiredBlobQueue(redis_client),
    )


def build_repository(settings: ServiceSettings, stores: StoreBundle) -> SnippetRepository:
    return SnippetRepository(
        stores.metadata,
        stores.blobs,
        retired_blobs=stores.retired_blobs,
        config=settings.repository,
    )


def build_reconciler(settings: ServiceSettings, stores: StoreBundle) -> Reconciler:
    return Reconciler(
        stores.metadata,
        stores.blobs,
        retired_blobs=stores.retired_blobs,
        config=settings.repository,
    )


__all__ = [
    "StoreBundle",
    "build_reconciler",
    "build_repository",
    "build_stores",
    "create_async_redis",
]
