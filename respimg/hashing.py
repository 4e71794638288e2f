"""Content fingerprints for cache-busted filenames."""

from __future__ import annotations

import hashlib

FINGERPRINT_LENGTH = 8


def fingerprint(data: bytes) -> str:
    """Return the first 8 hex characters of the SHA-256 of data."""
    return hashlib.sha256(data).hexdigest()[:FINGERPRINT_LENGTH]
