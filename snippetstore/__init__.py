"""Snippet persistence over a metadata store and a content blob store."""

from .config import RepositoryConfig, ServiceSettings
from .exceptions import (
    ConflictError,
    ConsistencyViolationError,
    SnippetNotFoundError,
    SnippetStoreError,
    StoreUnavailableError,
)
from .reconcile import ReconcileReport, Reconciler
from .repository import SnippetRepository
from .snippet import Snippet, SnippetPage, SnippetRecord

__all__ = [
    "ConflictError",
    "ConsistencyViolationError",
    "ReconcileReport",
    "Reconciler",
    "RepositoryConfig",
    "ServiceSettings",
    "Snippet",
    "SnippetNotFoundError",
    "SnippetPage",
    "SnippetRecord",
    "SnippetRepository",
    "SnippetStoreError",
    "StoreUnavailableError",
]
