"""Snippet data model and content key helpers."""

from .keys import new_content_key, new_snippet_id, snippet_id_from_key
from .model import (
    SNIPPET_STATUSES,
    STATUS_ACTIVE,
    STATUS_DELETING,
    STATUS_PENDING,
    STATUS_TOMBSTONED,
    Snippet,
    SnippetPage,
    SnippetRecord,
)

__all__ = [
    "SNIPPET_STATUSES",
    "STATUS_ACTIVE",
    "STATUS_DELETING",
    "STATUS_PENDING",
    "STATUS_TOMBSTONED",
    "Snippet",
    "SnippetPage",
    "SnippetRecord",
    "new_content_key",
    "new_snippet_id",
    "snippet_id_from_key",
]
