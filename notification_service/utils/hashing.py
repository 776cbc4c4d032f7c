"""Deterministic identifiers derived from dedupe keys and secrets."""

from __future__ import annotations

import hashlib


def stable_id(value: str) -> str:
    """SHA-256 hex digest used as a document id for a dedupe key."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def redact_hash(value: str, length: int = 16) -> str:
    """Short digest for logging phone numbers and device tokens."""
    return stable_id(value)[:length]
