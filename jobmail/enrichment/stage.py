"""Enrichment stage: page content, embedding and the posting-side filter."""

from dataclasses import dataclass
from typing import Optional

from jobmail.clients.exceptions import ClientError, is_retryable
from jobmail.clients.interfaces import CrawlPolicy, PageSource
from jobmail.domain.models import ProcessingState
from jobmail.embeddings.index import EmbeddingIndex
from jobmail.filtering.semantic import SemanticFilter
from jobmail.logging import get_logger
from jobmail.logging.context import log_context
from jobmail.persistence import PersistenceError, PostingRepository, get_session

from .content import ContentExtractor, PageContent

logger = get_logger(__name__, component="enrichment")


@dataclass
class EnrichmentOutcome:
    """Per-posting enrichment result.

    Attributes:
        posting_id: Posting that was processed
        skipped: True when the posting no longer exists
        crawled: Whether the page was fetched
        crawl_skip_reason: Why the page was not fetched
        fetch_error: Fetch error that was tolerated (no content stored)
        description_updated: A description was merged
        salary_updated: A salary was merged
        embedded: An embedding was stored
        blacklisted: The posting-side filter blacklisted the posting
        final_state: Processing state after the run
    """

    posting_id: int
    skipped: bool = False
    crawled: bool = False
    crawl_skip_reason: Optional[str] = None
    fetch_error: Optional[str] = None
    description_updated: bool = False
    salary_updated: bool = False
    embedded: bool = False
    blacklisted: bool = False
    final_state: Optional[ProcessingState] = None


class EnrichmentStage:
    """Fetches a posting's page, stores what it learned, embeds and filters.

    Redelivery is safe: content only merges upward, the embedding is replaced
    by an equivalent one and a completed posting stays completed.
    """

    def __init__(
        self,
        pages: PageSource,
        crawl_policy: CrawlPolicy,
        extractor: ContentExtractor,
        index: EmbeddingIndex,
        semantic_filter: SemanticFilter,
        session_factory=get_session,
    ):
        self.pages = pages
        self.crawl_policy = crawl_policy
        self.extractor = extractor
        self.index = index
        self.semantic_filter = semantic_filter
        self._session_factory = session_factory

    def enrich(self, posting_id: int, final_attempt: bool = False) -> EnrichmentOutcome:
        """Enrich one posting.

        Args:
            posting_id: Posting to enrich
            final_attempt: When True, transient fetch errors degrade to "no
                content" instead of propagating, so the posting can still complete

        Raises:
            ClientError: Transient fetch failure (not on the final attempt)
            EmbeddingError: Embedding failed or timed out
            PersistenceError: Database failure
        """
        outcome = EnrichmentOutcome(posting_id=posting_id)

        with log_context(posting_id=posting_id):
            with self._session_factory() as session:
                repo = PostingRepository(session)
                posting = repo.get_by_id(posting_id)
                if posting is None:
                    outcome.skipped = True
                    logger.info("Posting not found, nothing to enrich", extra={"event": "enrichment.posting.missing"})
                    return outcome

                moved_to_processing = posting.processing_state != ProcessingState.COMPLETED
                if moved_to_processing:
                    repo.set_state(posting_id, ProcessingState.PROCESSING)

            try:
                still_exists = self._run(posting_id, posting.url, posting.title, outcome, final_attempt)
            except Exception as e:
                if moved_to_processing:
                    self._mark_failed(posting_id, e)
                raise

            if not still_exists:
                outcome.skipped = True
                return outcome

            if moved_to_processing:
                with self._session_factory() as session:
                    PostingRepository(session).set_state(posting_id, ProcessingState.COMPLETED)
            outcome.final_state = ProcessingState.COMPLETED

            logger.info(
                "Posting enriched",
                extra={
                    "event": "enrichment.posting.completed",
                    "crawled": outcome.crawled,
                    "description_updated": outcome.description_updated,
                    "salary_updated": outcome.salary_updated,
                    "blacklisted": outcome.blacklisted,
                },
            )
            return outcome

    def _run(self, posting_id: int, url: str, title: str, outcome: EnrichmentOutcome, final_attempt: bool) -> bool:
        """Content, embedding and filter; returns False if the posting was deleted meanwhile."""
        content = self._fetch_content(url, title, outcome, final_attempt)

        if content is not None:
            with self._session_factory() as session:
                repo = PostingRepository(session)
                outcome.description_updated = bool(content.description) and repo.merge_content(
                    posting_id, description=content.description
                )
                if content.salary is not None:
                    outcome.salary_updated = repo.merge_content(posting_id, salary=content.salary)

        with self._session_factory() as session:
            posting = PostingRepository(session).get_by_id(posting_id)
        if posting is None:
            logger.info("Posting deleted during enrichment", extra={"event": "enrichment.posting.vanished"})
            return False

        embedding = self.index.embed(posting.embedding_text())
        with self._session_factory() as session:
            PostingRepository(session).set_embedding(posting_id, embedding)
        outcome.embedded = True

        filter_outcome = self.semantic_filter.check_posting(posting_id)
        outcome.blacklisted = bool(filter_outcome.blacklisted_ids)
        return True

    def _fetch_content(
        self, url: str, title: str, outcome: EnrichmentOutcome, final_attempt: bool
    ) -> Optional[PageContent]:
        if not self.crawl_policy.is_crawlable(url):
            outcome.crawl_skip_reason = self.crawl_policy.skip_reason(url) or "not crawlable"
            logger.info(
                f"Skipping page fetch: {outcome.crawl_skip_reason}",
                extra={"event": "enrichment.fetch.skipped", "url": url},
            )
            return None

        try:
            html = self.pages.fetch_page(url)
        except ClientError as e:
            if is_retryable(e) and not final_attempt:
                raise
            outcome.fetch_error = str(e)
            logger.warning(
                f"Page fetch failed, continuing without content: {e}",
                extra={"event": "enrichment.fetch.degraded", "url": url, "final_attempt": final_attempt},
            )
            return None

        outcome.crawled = True
        return self.extractor.extract(html, title)

    def mark_abandoned(self, posting_id: int) -> bool:
        """Fail a posting left ``processing`` by an attempt that never returned.

        A posting that already completed or failed is left as is.

        Returns:
            True if the posting was moved to failed
        """
        with log_context(posting_id=posting_id):
            with self._session_factory() as session:
                repo = PostingRepository(session)
                posting = repo.get_by_id(posting_id)
                if posting is None or posting.processing_state != ProcessingState.PROCESSING:
                    return False
                repo.set_state(posting_id, ProcessingState.FAILED)

            logger.warning(
                "Enrichment abandoned, posting marked failed",
                extra={"event": "enrichment.posting.abandoned"},
            )
            return True

    def _mark_failed(self, posting_id: int, error: Exception) -> None:
        logger.warning(
            f"Enrichment failed: {error}",
            extra={"event": "enrichment.posting.failed", "error_type": type(error).__name__},
        )
        try:
            with self._session_factory() as session:
                repo = PostingRepository(session)
                if repo.get_by_id(posting_id) is not None:
                    repo.set_state(posting_id, ProcessingState.FAILED)
        except PersistenceError as e:
            logger.error(
                f"Could not mark posting failed: {e}",
                extra={"event": "enrichment.state.update_failed"},
                exc_info=True,
            )
