"""Content key generation.

Keys look like ``snippets/<owner digest>/<snippet id>/<nonce>``. The owner is
hashed so user-controlled text never reaches the blob store, and every write
gets a fresh nonce so a key is never reused.
"""

from __future__ import annotations

import hashlib
import uuid

KEY_NAMESPACE = "snippets"
_OWNER_DIGEST_LENGTH = 24


def owner_digest(owner_id: str) -> str:
    return hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:_OWNER_DIGEST_LENGTH]


def new_snippet_id() -> str:
    return uuid.uuid4().hex


def new_content_key(owner_id: str, snippet_id: str) -> str:
    return f"{KEY_NAMESPACE}/{owner_digest(owner_id)}/{snippet_id}/{uuid.uuid4().hex}"


def snippet_id_from_key(key: str) -> str | None:
    """Return the snippet id embedded in ``key``, or None for foreign keys."""
    parts = key.split("/")
    if len(parts) != 4 or parts[0] != KEY_NAMESPACE or not all(parts):
        return None
    return parts[2]


__all__ = [
    "KEY_NAMESPACE",
    "new_content_key",
    "new_snippet_id",
    "owner_digest",
    "snippet_id_from_key",
]
