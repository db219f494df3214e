"""Pydantic models for the public API surface."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from ..snippet import Snippet


class SnippetCreateRequest(BaseModel):
    owner_id: str = Field(..., min_length=1, description="Identifier of the owning principal")
    title: str = Field(..., min_length=1, description="Short descriptive title")
    content: str = Field(..., description="Snippet text, stored as UTF-8")
    tags: List[str] = Field(default_factory=list, description="Free-form labels")
    description: str | None = Field(None, description="Longer explanation of the snippet")
    language: str | None = Field(None, description="Programming language name")


class SnippetUpdateRequest(BaseModel):
    expected_version: int = Field(..., ge=1, description="Version the caller last read")
    title: str | None = None
    tags: List[str] | None = None
    description: str | None = None
    language: str | None = None
    content: str | None = Field(None, description="Replacement text; omit to keep the content")


class SnippetResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    description: str | None = None
    language: str | None = None
    tags: List[str] = []
    status: str
    version: int
    created_at: str
    updated_at: str
    content: str | None = None

    @classmethod
    def from_snippet(cls, snippet: Snippet) -> "SnippetResponse":
        content = None
        if snippet.content is not None:
            content = snippet.content.decode("utf-8", errors="replace")
        return cls(
            id=snippet.id,
            owner_id=snippet.owner_id,
            title=snippet.title,
            description=snippet.description,
            language=snippet.language,
            tags=list(snippet.tags),
            status=snippet.status,
            version=snippet.version,
            created_at=snippet.created_at.isoformat(),
            updated_at=snippet.updated_at.isoformat(),
            content=content,
        )


class SnippetListResponse(BaseModel):
    owner_id: str
    snippets: List[SnippetResponse]
    next_cursor: str | None = None


class ReconcileJobResponse(BaseModel):
    job_id: str
    status: str


__all__ = [
    "ReconcileJobResponse",
    "SnippetCreateRequest",
    "SnippetListResponse",
    "SnippetResponse",
    "SnippetUpdateRequest",
]
