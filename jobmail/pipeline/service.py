"""Operations exposed to the outside world (CLI, a web layer, tests).

``PipelineService`` is a thin facade: it reads and writes the record store and
enqueues work, while all heavy lifting happens in the task handlers.
"""

import threading
from typing import List, Optional
from uuid import uuid4

from jobmail.clients.exceptions import ClientError
from jobmail.clients.interfaces import MailSource, MessageClassifier
from jobmail.config.models import AppConfig
from jobmail.domain.models import (
    IncomingMessage,
    Keyword,
    Posting,
    PostingFilters,
    PostingRemovedEvent,
    ProcessingState,
    SourceMessage,
    TaskKind,
)
from jobmail.filtering.events import EventBus
from jobmail.logging import get_logger
from jobmail.logging.context import log_context
from jobmail.persistence import (
    KeywordRepository,
    PersistenceError,
    PostingRepository,
    SourceMessageRepository,
    get_session,
)
from jobmail.utils.timestamps import utc_now

from .models import PendingWorkReport, ScanResult
from .queue import TaskQueue

logger = get_logger(__name__, component="service")


class PipelineService:
    """Facade over the record store, the task queue and the event bus."""

    def __init__(
        self,
        queue: TaskQueue,
        events: EventBus,
        mail_source: Optional[MailSource] = None,
        classifier: Optional[MessageClassifier] = None,
        config: Optional[AppConfig] = None,
        session_factory=get_session,
    ):
        """
        Initialize the service.

        Args:
            queue: Task queue that stages pick work from
            events: Bus on which posting removals are announced
            mail_source: Where scans read messages from (None disables scans)
            classifier: Decides which messages are job related
            config: Application configuration
            session_factory: Context manager factory yielding sessions
        """
        self.queue = queue
        self._events = events
        self.mail_source = mail_source
        self.classifier = classifier
        self.config = config or AppConfig()
        self._session_factory = session_factory
        self._scan_lock = threading.Lock()

    @property
    def events(self) -> EventBus:
        """Subscribe here to learn when postings leave the visible set."""
        return self._events

    # Postings

    def list_postings(self, filters: Optional[PostingFilters] = None) -> List[Posting]:
        """Visible postings, newest first."""
        with self._session_factory() as session:
            return PostingRepository(session).list_postings(filters or PostingFilters())

    def get_posting(self, posting_id: int) -> Optional[Posting]:
        with self._session_factory() as session:
            return PostingRepository(session).get_by_id(posting_id)

    def delete_posting(self, posting_id: int) -> bool:
        """Delete a posting and announce its removal.

        Returns:
            False if the posting did not exist (nothing is announced)
        """
        with self._session_factory() as session:
            deleted = PostingRepository(session).delete(posting_id)

        if deleted:
            logger.info(
                f"Posting {posting_id} deleted",
                extra={"event": "service.posting.deleted", "posting_id": posting_id},
            )
            self._events.publish(PostingRemovedEvent(id=posting_id, reason="deleted"))
        return deleted

    def reset_posting(self, posting_id: int) -> None:
        """Send a posting back through enrichment from scratch.

        Raises:
            RecordNotFoundError: If the posting doesn't exist
        """
        with self._session_factory() as session:
            PostingRepository(session).reset_state(posting_id)
            self.queue.enqueue(TaskKind.ENRICH, posting_id, unique=True, session=session)
        logger.info(
            f"Posting {posting_id} reset for enrichment",
            extra={"event": "service.posting.reset", "posting_id": posting_id},
        )

    def posting_stats(self) -> dict:
        """Posting and message counts."""
        with self._session_factory() as session:
            return {
                "postings": PostingRepository(session).get_stats(model=self.config.embedding.model),
                "messages": SourceMessageRepository(session).get_stats(),
            }

    def queue_stats(self) -> dict:
        """Task counts per kind and status."""
        return self.queue.stats()

    # Blacklist

    def replace_blacklist(self, text: str) -> List[Keyword]:
        """Replace the blacklist with the non-empty lines of ``text``.

        Every posting is un-blacklisted and each new keyword is queued for
        embedding; the keyword tasks then blacklist matching postings again.
        The keywords, the reset and the tasks commit together.

        Returns:
            The stored keywords
        """
        with self._session_factory() as session:
            keywords = KeywordRepository(session).replace_all(text.splitlines())
            unhidden = PostingRepository(session).reset_all_blacklisted()
            for keyword in keywords:
                self.queue.enqueue(TaskKind.COMPUTE_KEYWORD_EMBEDDING, keyword.id, session=session)

        logger.info(
            f"Blacklist replaced with {len(keywords)} keywords",
            extra={
                "event": "service.blacklist.replaced",
                "keyword_count": len(keywords),
                "postings_unhidden": unhidden,
            },
        )
        return keywords

    # Scanning

    def trigger_scan(self) -> ScanResult:
        """Read new mail, store it and queue extraction for job-related messages.

        Only one scan runs at a time; a concurrent call returns immediately
        with ``run_skipped`` set. A message that cannot be classified or stored
        is counted as failed and the scan goes on.
        """
        result = ScanResult(scan_id=uuid4().hex, started_at=utc_now())

        if not self._scan_lock.acquire(blocking=False):
            with log_context(scan_id=result.scan_id):
                logger.warning(
                    "Scan skipped: previous scan still in progress",
                    extra={"event": "scan.skipped", "reason": "lock_held"},
                )
            result.run_skipped = True
            result.finished_at = utc_now()
            return result

        try:
            with log_context(scan_id=result.scan_id):
                self._scan(result)
                result.finished_at = utc_now()
                logger.info(
                    f"Scan completed: {result.processed} new messages, {result.job_related} job related",
                    extra={
                        "event": "scan.completed",
                        "duration_ms": int(result.duration_seconds * 1000),
                        "fetched": result.fetched,
                        "processed": result.processed,
                        "job_related": result.job_related,
                        "skipped": result.skipped,
                        "failed": result.failed,
                        "had_errors": result.had_errors,
                    },
                )
                return result
        finally:
            self._scan_lock.release()

    def _scan(self, result: ScanResult) -> None:
        if self.mail_source is None or self.classifier is None:
            result.error = "No mail source configured"
            logger.warning("Scan has no mail source", extra={"event": "scan.unconfigured"})
            return

        logger.info("Scan started", extra={"event": "scan.started"})
        try:
            messages = self.mail_source.fetch_messages(self.config.scan.max_messages)
        except (ClientError, OSError) as e:
            result.error = str(e)
            logger.error(
                f"Mail source failed: {e}",
                extra={"event": "scan.fetch.failed", "error_type": type(e).__name__},
                exc_info=True,
            )
            return
        result.fetched = len(messages)

        with self._session_factory() as session:
            known = SourceMessageRepository(session).known_external_ids(m.external_id for m in messages)

        for message in messages:
            if message.external_id in known:
                result.skipped += 1
                continue
            try:
                self._store_message(message, result)
            except (PersistenceError, ClientError) as e:
                result.failed += 1
                logger.error(
                    f"Failed to store message {message.external_id}: {e}",
                    extra={"event": "scan.message.failed", "external_id": message.external_id},
                    exc_info=True,
                )

    def _store_message(self, message: IncomingMessage, result: ScanResult) -> None:
        classification = self.classifier.classify(message)
        record = SourceMessage(
            external_id=message.external_id,
            subject=message.subject,
            sender=message.sender,
            body=message.body,
            is_job_related=classification.is_job_related,
            received_at=message.received_at,
        )

        with self._session_factory() as session:
            stored, is_new = SourceMessageRepository(session).save(record)
            if is_new and stored.is_job_related:
                task = self.queue.enqueue(TaskKind.EXTRACT_FROM_MESSAGE, stored.id, session=session)
                result.extract_task_ids.append(task.id)

        if not is_new:
            # Stored by a concurrent writer since the known-id lookup
            result.skipped += 1
            return

        result.processed += 1
        if stored.is_job_related:
            result.job_related += 1
        logger.debug(
            f"Stored message: {message.subject[:80]}",
            extra={
                "event": "scan.message.stored",
                "message_id": stored.id,
                "is_job_related": stored.is_job_related,
                "confidence": classification.confidence,
            },
        )

    # Maintenance

    def queue_pending_work(self) -> PendingWorkReport:
        """Enqueue everything that should have a task but may not have one.

        Covers work lost before it was queued, postings left failed, and
        embeddings made by a different model. Tasks that are already waiting
        or active are not duplicated.
        """
        report = PendingWorkReport()
        model = self.config.embedding.model

        with self._session_factory() as session:
            message_ids = [m.id for m in SourceMessageRepository(session).list_unprocessed_job_related()]
            posting_repo = PostingRepository(session)
            unfinished_ids = posting_repo.get_ids_in_state(ProcessingState.PENDING, ProcessingState.FAILED)
            unfinished = set(unfinished_ids)
            stale_ids = [p.id for p in posting_repo.get_postings_without_embedding(model) if p.id not in unfinished]
            keyword_ids = [k.id for k in KeywordRepository(session).get_without_embedding(model)]

        for message_id in message_ids:
            self.queue.enqueue(TaskKind.EXTRACT_FROM_MESSAGE, message_id, unique=True)
            report.messages += 1
        for posting_id in unfinished_ids:
            self.queue.enqueue(TaskKind.ENRICH, posting_id, unique=True)
            report.postings += 1
        for posting_id in stale_ids:
            self.queue.enqueue(TaskKind.ENRICH, posting_id, unique=True)
            report.stale_embeddings += 1
        for keyword_id in keyword_ids:
            self.queue.enqueue(TaskKind.COMPUTE_KEYWORD_EMBEDDING, keyword_id, unique=True)
            report.keywords += 1

        logger.info(
            f"Queued {report.total} pending tasks",
            extra={
                "event": "service.pending.queued",
                "messages": report.messages,
                "postings": report.postings,
                "stale_embeddings": report.stale_embeddings,
                "keywords": report.keywords,
            },
        )
        return report
