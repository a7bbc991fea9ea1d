"""Shared helpers — hashing, timestamps, etc."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone


def sha256_bytes(payload: bytes) -> str:
    """Return the hex SHA-256 digest of *payload*."""
    return hashlib.sha256(payload).hexdigest()


def utcnow_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()
