"""Posting title detection from message bodies and subjects."""

import re
from typing import List, Optional, Pattern, Sequence, Tuple

from .urls import clean_url, has_job_path, is_job_board_url

DEFAULT_TITLE = "Job Opportunity"
MAX_TITLE_LENGTH = 200

_INLINE_TITLE = re.compile(r"^(.+?)\s+[-–|]\s+(https?://\S+)")
_STANDALONE_URL = re.compile(r"^(https?://\S+)")
_TITLE_LOOKBACK_LINES = 10

# Lines near a URL that are never titles
_NOISE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"easily apply",
        r"\bdays? ago\b",
        r"\bhours? ago\b",
        r"^(new|indeed|job alert|jobs? \d+)",
        r"^see matching",
        r"^https?://",
        r"^just posted$",
        r"^(today|yesterday)$",
        r"^\d+\s+(day|hour|minute)s?\s+ago$",
    )
]

_REPLY_PREFIX = re.compile(r"^\s*((re|fwd?|aw|wg)\s*:\s*)+", re.IGNORECASE)
_TAG_PREFIX = re.compile(r"^\s*\[[^\]]*\]\s*")

_SUBJECT_PREFIXES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^complete your application for\s+",
        r"^apply for\s+",
        r"^new job:?\s+",
        r"^job alert:?\s+",
        r"^job opportunity:?\s+",
        r"^hiring:?\s+",
        r"^we're hiring:?\s+",
        r"^\d+\s+new jobs?:?\s+",
        r"^\d+\s+new job offers? found:?\s*",
    )
]

_SUBJECT_SUFFIXES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\s*-\s+and \d+ more .*jobs? in .*$",
        r"\s*-\s+\d+ more .*jobs? in .*$",
        r"\s*\+\s*\d+ neue Jobs in .*$",
        r"\s*und weitere$",
        r"\s*and more$",
        r"\s*for you!?$",
        r"\s*[\[(][^\[\]()]*[\])]$",
    )
]

_BODY_TITLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"position:\s*([^\n]+)",
        r"role:\s*([^\n]+)",
        r"job title:\s*([^\n]+)",
        r"hiring for:\s*([^\n]+)",
    )
]


def truncate_title(title: str, max_length: int = MAX_TITLE_LENGTH) -> str:
    """Cut titles over ``max_length`` to ``max_length - 3`` chars plus "..."."""
    if len(title) <= max_length:
        return title
    return title[: max_length - 3] + "..."


def _is_noise(line: str) -> bool:
    return not line or any(p.search(line) for p in _NOISE_PATTERNS)


def _looks_like_job_url(url: str, patterns: Optional[Sequence[Pattern]]) -> bool:
    lowered = url.lower()
    return is_job_board_url(url, patterns) or has_job_path(url) or "/job" in lowered or "/vacanc" in lowered


def find_titled_urls(body: str, patterns: Optional[Sequence[Pattern]] = None) -> List[Tuple[str, str]]:
    """``(title, url)`` pairs recognisable in a message body.

    Recognised layouts:
    - ``Senior Engineer - https://example.com/jobs/42`` on one line
    - a URL on its own line, titled by the nearest of the previous ten lines
      that is 10 to 100 characters long and not noise ("Easily apply", "3 days ago")
    """
    if not body:
        return []

    results: List[Tuple[str, str]] = []
    lines = body.splitlines()
    for index, raw in enumerate(lines):
        line = raw.strip()

        inline = _INLINE_TITLE.match(line)
        if inline:
            title = inline.group(1).strip()
            url = clean_url(inline.group(2))
            if title and _looks_like_job_url(url, patterns):
                results.append((title, url))
            continue

        standalone = _STANDALONE_URL.match(line)
        if not standalone:
            continue
        url = clean_url(standalone.group(1))
        if not _looks_like_job_url(url, patterns):
            continue

        for back in range(index - 1, max(-1, index - 1 - _TITLE_LOOKBACK_LINES), -1):
            candidate = lines[back].strip()
            if _is_noise(candidate):
                continue
            if 10 <= len(candidate) <= 100:
                results.append((candidate, url))
                break

    return results


def title_from_subject(subject: Optional[str], body: Optional[str] = None) -> str:
    """Best-effort title from a message subject.

    Strips reply prefixes, ``[tags]``, alert prefixes ("New job:") and
    promotional suffixes ("and 5 more jobs in Berlin"). A result shorter than
    ten characters falls back to ``Position:``/``Role:`` lines in the body,
    then to "Job Opportunity".
    """
    if not subject:
        return DEFAULT_TITLE

    title = _REPLY_PREFIX.sub("", subject)
    title = _TAG_PREFIX.sub("", title).strip()

    for pattern in _SUBJECT_PREFIXES:
        title = pattern.sub("", title)
    title = title.strip()

    for pattern in _SUBJECT_SUFFIXES:
        title = pattern.sub("", title)
    title = title.strip()

    if len(title) < 10 and body:
        for pattern in _BODY_TITLE_PATTERNS:
            match = pattern.search(body)
            if match and match.group(1).strip():
                title = match.group(1).strip()
                break

    return truncate_title(title) or DEFAULT_TITLE


def assign_titles(
    subject: Optional[str],
    body: str,
    urls: Sequence[str],
    patterns: Optional[Sequence[Pattern]] = None,
    max_length: int = MAX_TITLE_LENGTH,
) -> List[Tuple[str, str]]:
    """Pair every URL with a title.

    Titles found next to the URL in the body win; the rest share the
    subject-derived title, numbered `` (n)`` when there is more than one.
    """
    titled = {}
    for title, url in find_titled_urls(body, patterns):
        titled.setdefault(url, title)

    untitled = [url for url in urls if url not in titled]
    fallback = title_from_subject(subject, body)

    pairs: List[Tuple[str, str]] = []
    counter = 0
    for url in urls:
        if url in titled:
            title = titled[url]
        elif len(untitled) > 1:
            counter += 1
            title = f"{fallback} ({counter})"
        else:
            title = fallback
        pairs.append((truncate_title(title, max_length), url))
    return pairs
