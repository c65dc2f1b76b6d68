"""Deterministic hashing used for natural keys."""

import hashlib


def hash_string(value: str) -> str:
    """SHA-256 hex digest of a string (64 characters)."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def compute_url_key(normalized_url: str) -> str:
    """Natural key for a posting URL.

    The input must already be normalized (tracking parameters removed, host
    lowercased) so that URLs differing only in tracking noise share a key.
    """
    return hash_string(normalized_url.strip())
