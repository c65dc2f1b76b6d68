"""Job page fetching and HTML text extraction."""

import re
from typing import Optional

from bs4 import BeautifulSoup

from jobmail.logging import get_logger

from .base import HttpClient
from .interfaces import PageSource

logger = get_logger(__name__, component="pages")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Containers that hold the posting body on common boards, most specific first
DESCRIPTION_SELECTORS = [
    ".jobs-description__content",
    ".jobs-description-content__text",
    "#jobDescriptionText",
    ".jobsearch-jobDescriptionText",
    ".posting-description",
    ".job-post",
    '[data-automation-id="jobPostingDescription"]',
    ".jobDescription",
    ".job-description",
    ".job-details",
    ".description",
    "#content",
    "article",
    '[role="main"]',
    "main",
]

NOISE_SELECTORS = [
    "script",
    "style",
    "nav",
    "header",
    "footer",
    "iframe",
    "noscript",
    ".navigation",
    ".cookie-banner",
    ".advertisement",
    ".social-share",
]

SALARY_SELECTORS = [
    ".salary",
    ".compensation",
    ".pay",
    '[class*="salary"]',
    '[class*="compensation"]',
    '[data-automation-id="payRange"]',
    ".jobsearch-JobMetadataHeader-item",
]

TITLE_SELECTORS = [
    "h1",
    ".job-title",
    ".posting-headline",
    '[data-automation-id="jobPostingHeader"]',
    ".jobsearch-JobInfoHeader-title",
    "title",
]

MAX_TEXT_LENGTH = 50000
_MIN_CONTAINER_TEXT = 200


def clean_text(text: str) -> str:
    """Collapse whitespace and cap the length."""
    return re.sub(r"\s+", " ", text).strip()[:MAX_TEXT_LENGTH]


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def extract_raw_description(html: str) -> str:
    """Plain text of the posting body.

    Uses the first known container with substantial text, else the whole body.
    """
    soup = _soup(html)
    for selector in NOISE_SELECTORS:
        for element in soup.select(selector):
            element.decompose()

    for selector in DESCRIPTION_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = element.get_text(separator=" ", strip=True)
        if len(text) > _MIN_CONTAINER_TEXT:
            return clean_text(text)

    body = soup.body or soup
    return clean_text(body.get_text(separator=" ", strip=True))


def extract_page_title(html: str) -> Optional[str]:
    """Posting title from the page, if one is recognisable."""
    soup = _soup(html)
    for selector in TITLE_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        text = element.get_text(strip=True)
        if 0 < len(text) < 200:
            return text
    return None


def extract_salary_text(html: str) -> str:
    """Text most likely to mention pay: salary widgets, else the whole body."""
    soup = _soup(html)
    parts = []
    seen = set()
    # Several selectors can match the same widget
    for selector in SALARY_SELECTORS:
        for element in soup.select(selector):
            if id(element) in seen:
                continue
            seen.add(id(element))
            parts.append(element.get_text(separator=" ", strip=True))
    text = " ".join(p for p in parts if p)
    if text.strip():
        return clean_text(text)

    body = soup.body or soup
    return clean_text(body.get_text(separator=" ", strip=True))


class PageFetcher(HttpClient, PageSource):
    """Fetches job pages with browser-like headers; redirects are followed."""

    def __init__(self, timeout: float = 30, user_agent: str = BROWSER_USER_AGENT):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self._session.headers.update(
            {
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.9,de;q=0.8",
            }
        )

    def fetch_page(self, url: str) -> str:
        """HTML of ``url``.

        Raises:
            ClientHTTPError: On HTTP or connection errors
            ClientTimeoutError: On timeout
        """
        response = self._request(url)
        if response.url and response.url != url:
            logger.debug(
                "Followed redirect",
                extra={"event": "pages.fetch.redirected", "url": url, "final_url": response.url},
            )
        logger.debug(
            f"Fetched {len(response.text)} chars",
            extra={"event": "pages.fetch.succeeded", "url": url},
        )
        return response.text
