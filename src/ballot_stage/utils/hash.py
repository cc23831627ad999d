# src/ballot_stage/utils/hash.py
"""Hashing helpers for privacy-preserving vote metadata."""

from __future__ import annotations

import hashlib


def sha256_hexdigest(data: bytes) -> str:
    """Return the hexadecimal SHA-256 digest of the supplied data."""
    return hashlib.sha256(data).hexdigest()


def hash_origin(origin_address: str | None) -> str | None:
    """Return the SHA-256 hex digest of a network origin, or None if absent.

    Only the digest is persisted with a vote so the raw address never reaches
    the durable store.
    """
    if not origin_address:
        return None
    return sha256_hexdigest(origin_address.strip().encode("utf-8"))
