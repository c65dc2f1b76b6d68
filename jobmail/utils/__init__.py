"""Utility functions for hashing, time handling, and bounded calls."""

from .hashing import compute_url_key, hash_string
from .timeouts import CallTimeoutError, run_with_timeout
from .urls import DEFAULT_TRACKING_PARAMS, normalize_url, posting_url_key
from .timestamps import (
    ensure_utc,
    from_storage,
    parse_iso_datetime,
    storage_now,
    to_storage,
    utc_now,
)

__all__ = [
    # Hashing
    "hash_string",
    "compute_url_key",
    # Timestamps
    "utc_now",
    "ensure_utc",
    "to_storage",
    "from_storage",
    "storage_now",
    "parse_iso_datetime",
    # Timeouts
    "run_with_timeout",
    "CallTimeoutError",
    # URLs
    "normalize_url",
    "posting_url_key",
    "DEFAULT_TRACKING_PARAMS",
]
