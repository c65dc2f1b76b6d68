"""URL discovery, job-board filtering and deduplication."""

import re
from typing import Iterable, List, Optional, Pattern, Sequence

from jobmail.utils.urls import normalize_url

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
TRAILING_PUNCTUATION = re.compile(r"[.,;:!?)\]}>]+$")

# Known job boards and applicant tracking systems
JOB_URL_PATTERNS: List[Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"https?://(www\.)?linkedin\.com/(comm/)?jobs/view/\d+",
        r"https?://(www\.|[a-z]{2}\.)?indeed\.[a-z]{2,3}/.*?viewjob",
        r"https?://(www\.|[a-z]{2}\.)?indeed\.[a-z]{2,3}/(rc|pagead)/clk",
        r"https?://(www\.|[a-z]{2}\.)?indeed\.[a-z]{2,3}/jobs\?",
        r"https?://(www\.)?freelancermap\.(de|com)/(projektboerse/project/\d+|projekt/)",
        r"https?://(www\.)?upwork\.com/jobs/",
        r"https?://(www\.)?stepstone\.(de|com)/.*?stellenangebote",
        r"https?://(www\.)?xing\.com/jobs/",
        r"https?://(www\.)?monster\.(com|de|uk)/.*?job-openings",
        r"https?://(www\.)?glassdoor\.(com|de)/job-listing/",
        r"https?://(www\.)?dice\.com/jobs/",
        r"https?://weworkremotely\.com/remote-jobs/",
        r"https?://remoteok\.com/remote-jobs/",
        r"https?://(www\.)?(angel\.co|wellfound\.com)/.*?/jobs/",
        r"https?://([a-z0-9-]+\.)?greenhouse\.io/.*?/jobs/",
        r"https?://jobs\.lever\.co/",
        r"https?://[a-z0-9.-]+\.wd\d+\.myworkdayjobs\.com/",
        r"https?://jobs\.smartrecruiters\.com/",
        r"https?://[^/]+/(careers?|jobs?)/",
        r"https?://[^/]+/.*?/apply/",
    )
]

# Path fragments that mark a job page when no known board matched
JOB_PATH_KEYWORDS = (
    "/job/",
    "/jobs/",
    "/career/",
    "/careers/",
    "/apply/",
    "/application/",
    "/position/",
    "/vacancy/",
    "/vacancies/",
    "/opening/",
    "/stellenangebot/",
    "/projekt/",
    "/project/",
)


def clean_url(url: str) -> str:
    """Decode ``&amp;`` and strip trailing punctuation picked up from prose."""
    return TRAILING_PUNCTUATION.sub("", url.replace("&amp;", "&"))


def extract_all_urls(text: str) -> List[str]:
    """Every http(s) URL in ``text``, in order of appearance."""
    if not text:
        return []
    urls = (clean_url(match) for match in URL_PATTERN.findall(text))
    return [url for url in urls if url]


def compile_patterns(extra_patterns: Optional[Iterable[str]] = None) -> List[Pattern]:
    """Built-in job-board patterns plus configured extras."""
    patterns = list(JOB_URL_PATTERNS)
    for pattern in extra_patterns or ():
        patterns.append(re.compile(pattern, re.IGNORECASE))
    return patterns


def is_job_board_url(url: str, patterns: Optional[Sequence[Pattern]] = None) -> bool:
    return any(p.search(url) for p in (patterns if patterns is not None else JOB_URL_PATTERNS))


def has_job_path(url: str) -> bool:
    lowered = url.lower()
    return any(keyword in lowered for keyword in JOB_PATH_KEYWORDS)


def filter_job_urls(urls: Sequence[str], patterns: Optional[Sequence[Pattern]] = None) -> List[str]:
    """URLs that look like job postings.

    Known job boards win; only when none match are URLs kept by the path
    keyword heuristic.
    """
    matched = [url for url in urls if is_job_board_url(url, patterns)]
    if matched:
        return matched
    return [url for url in urls if has_job_path(url)]


def deduplicate_urls(urls: Iterable[str], tracking_params: Optional[Iterable[str]] = None) -> List[str]:
    """Drop URLs that are equal once tracking parameters are removed.

    The first original URL string of each group is kept. URLs that cannot be
    parsed deduplicate by exact text.
    """
    params = list(tracking_params) if tracking_params is not None else None
    seen = set()
    result: List[str] = []
    for url in urls:
        try:
            key = normalize_url(url, params)
        except ValueError:
            key = url
        if key not in seen:
            seen.add(key)
            result.append(url)
    return result
