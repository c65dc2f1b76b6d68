"""URL normalization used for posting natural keys and deduplication."""

from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .hashing import compute_url_key

DEFAULT_TRACKING_PARAMS = (
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "ref",
    "referer",
    "source",
    "trk",
    "tracking",
    "track",
    "email",
    "eid",
    "cid",
    "sid",
)


def _is_tracking_param(key: str, tracking: frozenset) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in tracking


def normalize_url(raw_url: str, tracking_params: Optional[Iterable[str]] = None) -> str:
    """Conservative URL normalization.

    Lowercases scheme and host, drops default ports, the fragment, a trailing
    path slash and tracking query parameters. Remaining parameters keep their
    order.

    Args:
        raw_url: URL as found in a message
        tracking_params: Parameter names to drop (``utm_*`` is always dropped)

    Raises:
        ValueError: If the URL has no scheme or host
    """
    parsed = urlparse(raw_url.strip())
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Not an absolute URL: {raw_url!r}")

    tracking = frozenset(
        p.lower() for p in (DEFAULT_TRACKING_PARAMS if tracking_params is None else tracking_params)
    )

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    if ":" in netloc:
        host, port = netloc.rsplit(":", maxsplit=1)
        if (scheme == "http" and port == "80") or (scheme == "https" and port == "443"):
            netloc = host

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    query = urlencode(
        [
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            if not _is_tracking_param(key, tracking)
        ],
        doseq=True,
    )

    return urlunparse((scheme, netloc, path, parsed.params, query, ""))


def posting_url_key(raw_url: str, tracking_params: Optional[Iterable[str]] = None) -> str:
    """Natural key of a posting URL.

    URLs that cannot be normalized are keyed by their exact (stripped) text.
    """
    try:
        normalized = normalize_url(raw_url, tracking_params)
    except ValueError:
        normalized = raw_url.strip()
    return compute_url_key(normalized)
