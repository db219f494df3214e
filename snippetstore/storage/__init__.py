"""Store interfaces and their adapters."""

from .base import BlobInfo, ContentBlobStore, MetadataStore, Page, RetiredBlobQueue
from .filesystem import LocalBlobStore
from .memory import MemoryBlobStore, MemoryMetadataStore, MemoryRetiredBlobQueue
from .redis_store import RedisBlobStore, RedisMetadataStore, RedisRetiredBlobQueue

__all__ = [
    "BlobInfo",
    "ContentBlobStore",
    "LocalBlobStore",
    "MemoryBlobStore",
    "MemoryMetadataStore",
    "MemoryRetiredBlobQueue",
    "MetadataStore",
    "Page",
    "RedisBlobStore",
    "RedisMetadataStore",
    "RedisRetiredBlobQueue",
    "RetiredBlobQueue",
]
