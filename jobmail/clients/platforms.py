"""Crawl policy backed by the platforms table."""

from typing import Iterable, List, Optional
from urllib.parse import urlparse

from jobmail.domain.models import Platform
from jobmail.logging import get_logger
from jobmail.persistence import PlatformRepository, get_session

from .interfaces import CrawlPolicy

logger = get_logger(__name__, component="platforms")

# Second-level public suffixes such as "co.uk", where the platform label sits one level higher
_COMPOUND_SUFFIX_LABELS = {"co", "com", "org", "net", "ac", "gov"}


def hostname_labels(url: str) -> List[str]:
    """Candidate platform keys for ``url``: full hostname, then the domain label.

    Example:
        >>> hostname_labels("https://de.linkedin.com/jobs/view/1")
        ['de.linkedin.com', 'linkedin']
    """
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return []

    candidates = [host]
    parts = host.split(".")
    if len(parts) >= 2:
        label = parts[-2]
        if label in _COMPOUND_SUFFIX_LABELS and len(parts) >= 3:
            label = parts[-3]
        if label not in candidates:
            candidates.append(label)
    return candidates


class PlatformPolicy(CrawlPolicy):
    """Allows crawling unless the URL's platform is marked as not crawlable.

    Unknown platforms are crawlable.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def seed(self, platforms: Iterable[Platform]) -> int:
        """Create or update platform rules; returns how many were written."""
        count = 0
        with self._session_factory() as session:
            repo = PlatformRepository(session)
            for platform in platforms:
                repo.upsert(platform)
                count += 1
        logger.info(
            f"Seeded {count} platform rules",
            extra={"event": "platforms.seed.completed", "count": count},
        )
        return count

    def lookup(self, url: str) -> Optional[Platform]:
        """Platform rule for ``url``: exact hostname first, then the domain label."""
        with self._session_factory() as session:
            repo = PlatformRepository(session)
            for candidate in hostname_labels(url):
                platform = repo.get_by_hostname(candidate)
                if platform is not None:
                    return platform
        return None

    def is_crawlable(self, url: str) -> bool:
        platform = self.lookup(url)
        return platform is None or platform.can_crawl

    def skip_reason(self, url: str) -> Optional[str]:
        platform = self.lookup(url)
        if platform is None or platform.can_crawl:
            return None
        return platform.skip_reason or f"Platform '{platform.hostname}' is not crawlable"
