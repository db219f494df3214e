"""Snippet metadata records and the caller-facing snippet view."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping

from pydantic import BaseModel, ConfigDict

from ..exceptions import InvalidSnippetError

STATUS_PENDING = "PENDING"
STATUS_ACTIVE = "ACTIVE"
STATUS_DELETING = "DELETING"
STATUS_TOMBSTONED = "TOMBSTONED"

SNIPPET_STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_DELETING, STATUS_TOMBSTONED)

# Fields a conditional update may touch. id, owner_id, created_at and version
# belong to the store.
MUTABLE_FIELDS = frozenset(
    {"title", "description", "language", "tags", "content_key", "status", "updated_at"}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SnippetRecord:
    """Metadata record for a snippet as held by the metadata store."""

    id: str
    owner_id: str
    title: str
    content_key: str | None
    status: str
    version: int = 1
    description: str | None = None
    language: str | None = None
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def sort_score(self) -> float:
        return self.created_at.timestamp()

    def with_changes(self, changes: Mapping[str, Any]) -> "SnippetRecord":
        """Return a copy with ``changes`` applied and the version bumped."""
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be changed: {', '.join(sorted(unknown))}")
        status = changes.get("status", self.status)
        if status not in SNIPPET_STATUSES:
            raise ValueError(f"Unknown snippet status: {status}")
        values = dict(changes)
        if "tags" in values:
            values["tags"] = list(values["tags"])
        return dataclasses.replace(self, version=self.version + 1, **values)

    def copy(self) -> "SnippetRecord":
        return dataclasses.replace(self, tags=list(self.tags))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "description": self.description,
            "language": self.language,
            "tags": list(self.tags),
            "content_key": self.content_key,
            "status": self.status,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnippetRecord":
        return cls(
            id=str(data["id"]),
            owner_id=str(data["owner_id"]),
            title=str(data.get("title", "")),
            description=data.get("description"),
            language=data.get("language"),
            tags=[str(tag) for tag in data.get("tags") or []],
            content_key=data.get("content_key"),
            status=str(data.get("status", STATUS_PENDING)),
            version=int(data.get("version", 1)),
            created_at=cls._parse_datetime(data.get("created_at")),
            updated_at=cls._parse_datetime(data.get("updated_at")),
        )

    @staticmethod
    def _parse_datetime(value: Any) -> datetime:
        if isinstance(value, datetime):
            return value.astimezone(timezone.utc)
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value).astimezone(timezone.utc)
            except ValueError:
                pass
        return utcnow()


class Snippet(BaseModel):
    """A snippet as returned to callers. ``content`` is omitted in listings."""

    id: str
    owner_id: str
    title: str
    description: str | None = None
    language: str | None = None
    tags: List[str] = []
    status: str
    version: int
    created_at: datetime
    updated_at: datetime
    content: bytes | None = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def from_record(cls, record: SnippetRecord, content: bytes | None = None) -> "Snippet":
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            title=record.title,
            description=record.description,
            language=record.language,
            tags=list(record.tags),
            status=record.status,
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
            content=content,
        )


class SnippetPage(BaseModel):
    """A page of snippets (without content) and the cursor for the next page."""

    snippets: List[Snippet]
    next_cursor: str | None = None


def normalize_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise InvalidSnippetError("Snippet title is required")
    return cleaned


def normalize_tags(tags: Iterable[str] | None) -> List[str]:
    """Strip tags, drop empty ones and de-duplicate preserving order."""
    if tags is None:
        return []
    if isinstance(tags, str):
        raise InvalidSnippetError("Tags must be a sequence of strings, not a string")
    seen: set[str] = set()
    normalized: List[str] = []
    for tag in tags:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            normalized.append(cleaned)
    return normalized


def ensure_bytes(content: Any) -> bytes:
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    raise InvalidSnippetError(f"Snippet content must be bytes, got {type(content).__name__}")


__all__ = [
    "MUTABLE_FIELDS",
    "SNIPPET_STATUSES",
    "STATUS_ACTIVE",
    "STATUS_DELETING",
    "STATUS_PENDING",
    "STATUS_TOMBSTONED",
    "Snippet",
    "SnippetPage",
    "SnippetRecord",
    "ensure_bytes",
    "normalize_tags",
    "normalize_title",
    "utcnow",
]
