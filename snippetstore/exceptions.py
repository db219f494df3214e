"""Error taxonomy shared by the stores, the repository and the API layer."""

from __future__ import annotations


class SnippetStoreError(Exception):
    """Base class for every error raised by snippetstore."""


class NotFoundError(SnippetStoreError):
    """Something that was asked for does not exist."""


class SnippetNotFoundError(NotFoundError):
    """No such snippet, or the snippet is being deleted or already deleted."""

    def __init__(self, snippet_id: str) -> None:
        super().__init__(f"Snippet not found: {snippet_id}")
        self.snippet_id = snippet_id


class RecordNotFoundError(NotFoundError):
    def __init__(self, snippet_id: str) -> None:
        super().__init__(f"Unknown snippet id: {snippet_id}")
        self.snippet_id = snippet_id


class BlobNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__(f"Blob not found: {key}")
        self.key = key


class AlreadyExistsError(SnippetStoreError):
    def __init__(self, snippet_id: str) -> None:
        super().__init__(f"Snippet already exists: {snippet_id}")
        self.snippet_id = snippet_id


class VersionMismatchError(SnippetStoreError):
    """Conditional update found a different version than expected."""

    def __init__(self, snippet_id: str, expected: int, actual: int | None = None) -> None:
        detail = f"expected version {expected}"
        if actual is not None:
            detail += f", found {actual}"
        super().__init__(f"Version mismatch for {snippet_id}: {detail}")
        self.snippet_id = snippet_id
        self.expected = expected
        self.actual = actual


class ConflictError(SnippetStoreError):
    """The caller's expected version is stale; re-read and retry."""

    def __init__(self, snippet_id: str, expected: int, actual: int | None = None) -> None:
        message = f"Snippet {snippet_id} was modified (expected version {expected}"
        message += f", current {actual})" if actual is not None else ")"
        super().__init__(message)
        self.snippet_id = snippet_id
        self.expected = expected
        self.actual = actual


class ConsistencyViolationError(SnippetStoreError):
    """An ACTIVE record names a blob that does not exist."""

    def __init__(self, snippet_id: str, content_key: str) -> None:
        super().__init__(
            f"Snippet {snippet_id} is ACTIVE but its content blob {content_key} is missing"
        )
        self.snippet_id = snippet_id
        self.content_key = content_key


class StoreUnavailableError(SnippetStoreError):
    """Transient backend failure. Safe to retry."""


class InvalidCursorError(SnippetStoreError, ValueError):
    pass


class InvalidSnippetError(SnippetStoreError, ValueError):
    pass


__all__ = [
    "AlreadyExistsError",
    "BlobNotFoundError",
    "ConflictError",
    "ConsistencyViolationError",
    "InvalidCursorError",
    "InvalidSnippetError",
    "NotFoundError",
    "RecordNotFoundError",
    "SnippetNotFoundError",
    "SnippetStoreError",
    "StoreUnavailableError",
    "VersionMismatchError",
]
