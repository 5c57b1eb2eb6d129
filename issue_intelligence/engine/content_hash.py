"""Content hashing used to detect that a cached embedding is stale."""

from __future__ import annotations

import hashlib

_SEPARATOR = "\n"


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower()


def compute_content_hash(title: str | None, body: str | None) -> str:
    """SHA-256 hex digest of the normalized (trimmed, lowercased) title and body.

    None is treated as an empty string, so an issue without a body hashes
    the same whether the body is missing or blank.
    """
    normalized = f"{_normalize(title)}{_SEPARATOR}{_normalize(body)}"
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
