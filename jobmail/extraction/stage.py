"""Extraction stage: turns a stored message into postings."""

from dataclasses import dataclass, field
from typing import List, Optional

from jobmail.config.models import ExtractionConfig
from jobmail.domain.models import TaskKind
from jobmail.logging import get_logger
from jobmail.logging.context import log_context
from jobmail.persistence import PostingRepository, SourceMessageRepository, get_session
from jobmail.utils.urls import posting_url_key

from .titles import assign_titles
from .urls import compile_patterns, deduplicate_urls, extract_all_urls, filter_job_urls

logger = get_logger(__name__, component="extraction")


class ExtractionError(Exception):
    """No candidate of a message could be stored; the message should be retried."""

    pass


@dataclass
class ExtractionOutcome:
    """Per-message extraction counts.

    Attributes:
        message_id: Message that was processed
        skipped: True when the message was missing or already processed
        skip_reason: Why the message was skipped
        urls_found: URLs found in the body before filtering
        candidates: Job URLs left after filtering and deduplication
        created: Postings inserted
        updated: Existing postings merged
        failed: Candidates that could not be stored
        enqueued: Enrich tasks enqueued
        posting_ids: Ids of all stored postings, in candidate order
    """

    message_id: int
    skipped: bool = False
    skip_reason: Optional[str] = None
    urls_found: int = 0
    candidates: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    enqueued: int = 0
    posting_ids: List[int] = field(default_factory=list)


class ExtractionStage:
    """Finds job URLs in a message, upserts postings and schedules enrichment.

    Re-running the stage for the same message is harmless: a processed
    message is skipped, and rediscovered URLs merge into their existing
    posting without scheduling enrichment again.
    """

    def __init__(self, queue, config: Optional[ExtractionConfig] = None, session_factory=get_session):
        """Initialize the stage.

        Args:
            queue: TaskQueue used to schedule enrichment
            config: Extraction settings
            session_factory: Context manager factory yielding sessions
        """
        self.queue = queue
        self.config = config or ExtractionConfig()
        self._session_factory = session_factory
        self._patterns = compile_patterns(self.config.extra_job_url_patterns)

    def extract(self, message_id: int) -> ExtractionOutcome:
        """Extract postings from one stored message.

        Raises:
            ExtractionError: If candidates existed but none could be stored
            PersistenceError: If the message cannot be read or marked processed
        """
        outcome = ExtractionOutcome(message_id=message_id)

        with log_context(message_id=message_id):
            with self._session_factory() as session:
                message = SourceMessageRepository(session).get_by_id(message_id)

            if message is None:
                outcome.skipped, outcome.skip_reason = True, "missing"
                logger.info(
                    "Message not found, nothing to extract",
                    extra={"event": "extraction.message.missing"},
                )
                return outcome
            if message.processed:
                outcome.skipped, outcome.skip_reason = True, "already_processed"
                logger.debug(
                    "Message already processed",
                    extra={"event": "extraction.message.skipped"},
                )
                return outcome

            all_urls = extract_all_urls(message.body)
            job_urls = filter_job_urls(all_urls, self._patterns)
            unique_urls = deduplicate_urls(job_urls, self.config.tracking_params)
            candidates = assign_titles(
                message.subject,
                message.body,
                unique_urls,
                self._patterns,
                max_length=self.config.max_title_length,
            )
            outcome.urls_found = len(all_urls)
            outcome.candidates = len(candidates)

            for title, url in candidates:
                self._store_candidate(message_id, title, url, outcome)

            if outcome.candidates and outcome.failed == outcome.candidates:
                raise ExtractionError(f"None of the {outcome.candidates} postings in message {message_id} could be stored")

            with self._session_factory() as session:
                marked = SourceMessageRepository(session).mark_processed(message_id)

            logger.info(
                f"Extracted {outcome.candidates} postings ({outcome.created} new)",
                extra={
                    "event": "extraction.message.completed",
                    "urls_found": outcome.urls_found,
                    "candidates": outcome.candidates,
                    "created": outcome.created,
                    "updated": outcome.updated,
                    "failed": outcome.failed,
                    "marked_processed": marked,
                },
            )
            return outcome

    def _store_candidate(self, message_id: int, title: str, url: str, outcome: ExtractionOutcome) -> None:
        """Upsert one posting; a new posting and its enrich task commit together."""
        try:
            with self._session_factory() as session:
                posting_id, is_new = PostingRepository(session).upsert_posting(
                    url,
                    title,
                    url_key=posting_url_key(url, self.config.tracking_params),
                    source_message_id=message_id,
                )
                if is_new:
                    self.queue.enqueue(TaskKind.ENRICH, posting_id, session=session)
        except Exception as e:
            # One bad candidate must not cost the rest of the message
            outcome.failed += 1
            logger.error(
                f"Failed to store posting {url}: {e}",
                extra={"event": "extraction.posting.failed", "url": url, "error_type": type(e).__name__},
                exc_info=True,
            )
            return

        outcome.posting_ids.append(posting_id)
        if is_new:
            outcome.created += 1
            outcome.enqueued += 1
        else:
            outcome.updated += 1
        logger.debug(
            "Stored posting",
            extra={"event": "extraction.posting.stored", "posting_id": posting_id, "is_new": is_new},
        )
