"""Data access layer (repositories) for persistence operations.

This module provides repository classes for postings, blacklist keywords,
source messages, and platform crawl rules. Repositories encapsulate database
operations and return domain models rather than ORM models. Every write is a
single-row statement that can be repeated safely.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from jobmail.domain.models import (
    Embedding,
    Keyword,
    Platform,
    Posting,
    PostingFilters,
    ProcessingState,
    Salary,
    SourceMessage,
    can_transition,
)
from jobmail.embeddings.vectors import encode_vector
from jobmail.utils.urls import posting_url_key
from jobmail.utils.timestamps import storage_now, to_storage

from .exceptions import (
    DataIntegrityError,
    InvalidStateTransition,
    PersistenceError,
    RecordNotFoundError,
)
from .schema import KeywordModel, PlatformModel, PostingModel, SourceMessageModel

logger = logging.getLogger(__name__)


def dialect_insert(session: Session, model):
    """Dialect-specific INSERT supporting ON CONFLICT clauses.

    Raises:
        PersistenceError: If the bound database has no upsert support here
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(model)
    if dialect == "postgresql":
        return postgresql.insert(model)
    raise PersistenceError(f"Unsupported database dialect for upsert: {dialect}")


def _embedding_columns(embedding: Embedding) -> dict:
    return {
        "embedding": encode_vector(embedding.vector),
        "embedding_model": embedding.model,
        "embedding_dim": embedding.dimension,
    }


def _salary_columns(salary: Optional[Salary]) -> dict:
    """Non-null salary fields only, so absent values never overwrite stored ones."""
    if salary is None:
        return {}
    columns = {
        "salary_min": salary.min,
        "salary_max": salary.max,
        "salary_currency": salary.currency,
        "salary_period": salary.period,
    }
    return {name: value for name, value in columns.items() if value is not None}


class PostingRepository:
    """Repository for posting records."""

    # Concurrent writers can invalidate a read between statements; retry a few times
    _MAX_RACE_RETRIES = 3

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def upsert_posting(
        self,
        url: str,
        title: str,
        *,
        url_key: Optional[str] = None,
        source_message_id: Optional[int] = None,
        salary: Optional[Salary] = None,
        description: Optional[str] = None,
    ) -> Tuple[int, bool]:
        """Insert a posting or merge into the existing one with the same URL key.

        The insert is ``ON CONFLICT (url_key) DO NOTHING``; when it inserts nothing
        the existing row is updated in one statement: title and last_seen_at are
        refreshed, salary fields, description and source_message_id are only
        written when the new value is non-null. Processing state is untouched.

        Args:
            url: URL as discovered (stored verbatim on first insert)
            title: Posting title
            url_key: Natural key; derived from ``url`` when not given
            source_message_id: Message the posting was found in
            salary: Salary estimate
            description: Description text

        Returns:
            Tuple of (posting id, is_new)

        Raises:
            DataIntegrityError: If the row vanished repeatedly while merging
            PersistenceError: If database error occurs
        """
        key = url_key or posting_url_key(url)
        description = description or None

        try:
            for _ in range(self._MAX_RACE_RETRIES):
                now = storage_now()
                insert_stmt = (
                    dialect_insert(self.session, PostingModel)
                    .values(
                        url_key=key,
                        url=url,
                        title=title,
                        source_message_id=source_message_id,
                        description=description,
                        blacklisted=False,
                        processing_state=ProcessingState.PENDING.value,
                        created_at=now,
                        last_seen_at=now,
                        updated_at=now,
                        **_salary_columns(salary),
                    )
                    .on_conflict_do_nothing(index_elements=["url_key"])
                    .returning(PostingModel.id)
                )
                inserted = self.session.execute(insert_stmt).first()
                if inserted is not None:
                    return inserted[0], True

                changes = {"title": title, "last_seen_at": now, "updated_at": now}
                changes.update(_salary_columns(salary))
                if description is not None:
                    changes["description"] = description
                if source_message_id is not None:
                    changes["source_message_id"] = source_message_id

                result = self.session.execute(
                    update(PostingModel)
                    .where(PostingModel.url_key == key)
                    .values(**changes)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    posting_id = self.session.execute(
                        select(PostingModel.id).where(PostingModel.url_key == key)
                    ).scalar_one()
                    return posting_id, False

                # Deleted between our insert and update; start over
                logger.debug(
                    "Posting disappeared during upsert, retrying",
                    extra={"event": "persistence.posting.upsert_retry", "url": url},
                )

            raise DataIntegrityError(f"Could not upsert posting for {url}: row kept disappearing")

        except IntegrityError as e:
            logger.error(f"Integrity error upserting posting {url}: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to upsert posting due to constraint violation: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting posting {url}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert posting: {e}") from e

    def get_by_id(self, posting_id: int) -> Optional[Posting]:
        """Retrieve a posting by id, or None."""
        try:
            model = self.session.get(PostingModel, posting_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving posting {posting_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve posting: {e}") from e

    def get_by_url_key(self, url_key: str) -> Optional[Posting]:
        """Retrieve a posting by its natural key, or None."""
        try:
            model = self.session.execute(
                select(PostingModel).where(PostingModel.url_key == url_key)
            ).scalar_one_or_none()
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving posting by key {url_key}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve posting: {e}") from e

    def get_by_url(self, url: str, tracking_params: Optional[Iterable[str]] = None) -> Optional[Posting]:
        """Retrieve the posting a URL resolves to after normalization, or None."""
        return self.get_by_url_key(posting_url_key(url, tracking_params))

    def list_postings(self, filters: Optional[PostingFilters] = None) -> List[Posting]:
        """List postings newest first.

        Blacklisted postings are hidden unless ``filters.include_blacklisted``.
        """
        filters = filters or PostingFilters()
        try:
            stmt = select(PostingModel)
            if filters.source_message_id is not None:
                stmt = stmt.where(PostingModel.source_message_id == filters.source_message_id)
            if filters.state is not None:
                stmt = stmt.where(PostingModel.processing_state == ProcessingState(filters.state).value)
            if not filters.include_blacklisted:
                stmt = stmt.where(PostingModel.blacklisted.is_(False))
            stmt = (
                stmt.order_by(PostingModel.created_at.desc(), PostingModel.id.desc())
                .limit(filters.limit)
                .offset(filters.offset)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing postings: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list postings: {e}") from e

    def get_postings_without_embedding(self, model: str) -> List[Posting]:
        """Postings with no embedding, or one produced by a different model."""
        try:
            stmt = (
                select(PostingModel)
                .where(
                    or_(
                        PostingModel.embedding.is_(None),
                        PostingModel.embedding_model.is_(None),
                        PostingModel.embedding_model != model,
                    )
                )
                .order_by(PostingModel.id)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving postings without embedding: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve postings: {e}") from e

    def get_postings_with_embedding(self, model: str, exclude_blacklisted: bool = True) -> List[Posting]:
        """Postings whose embedding was produced by ``model``."""
        try:
            stmt = select(PostingModel).where(
                PostingModel.embedding.is_not(None),
                PostingModel.embedding_model == model,
            )
            if exclude_blacklisted:
                stmt = stmt.where(PostingModel.blacklisted.is_(False))
            stmt = stmt.order_by(PostingModel.id)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving postings with embedding: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve postings: {e}") from e

    def get_ids_in_state(self, *states: ProcessingState) -> List[int]:
        """Ids of postings currently in any of the given states."""
        try:
            stmt = (
                select(PostingModel.id)
                .where(PostingModel.processing_state.in_([ProcessingState(s).value for s in states]))
                .order_by(PostingModel.id)
            )
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving posting ids by state: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve postings: {e}") from e

    def set_blacklisted(self, posting_id: int, blacklisted: bool, reason: Optional[str] = None) -> bool:
        """Set the blacklist flag.

        Returns:
            True if the flag changed, False if it already had that value

        Raises:
            RecordNotFoundError: If the posting doesn't exist
        """
        try:
            result = self.session.execute(
                update(PostingModel)
                .where(PostingModel.id == posting_id, PostingModel.blacklisted.is_(not blacklisted))
                .values(
                    blacklisted=blacklisted,
                    blacklist_reason=reason if blacklisted else None,
                    updated_at=storage_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return True
            if self.session.get(PostingModel, posting_id) is None:
                raise RecordNotFoundError(f"Posting {posting_id} not found")
            return False
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating blacklist flag for posting {posting_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update blacklist flag: {e}") from e

    def reset_all_blacklisted(self) -> int:
        """Clear the blacklist flag on every posting; returns rows changed."""
        try:
            result = self.session.execute(
                update(PostingModel)
                .where(PostingModel.blacklisted.is_(True))
                .values(blacklisted=False, blacklist_reason=None, updated_at=storage_now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error resetting blacklist flags: {e}", exc_info=True)
            raise PersistenceError(f"Failed to reset blacklist flags: {e}") from e

    def set_state(self, posting_id: int, state: ProcessingState) -> ProcessingState:
        """Advance the processing state.

        Only forward transitions are accepted (see domain ALLOWED_TRANSITIONS);
        the update is conditional on the state read, so two writers cannot both
        apply a transition from the same starting state.

        Returns:
            The state the posting was in before the change

        Raises:
            RecordNotFoundError: If the posting doesn't exist
            InvalidStateTransition: If the transition would go backwards
            PersistenceError: If database error occurs
        """
        target = ProcessingState(state)
        try:
            for _ in range(self._MAX_RACE_RETRIES):
                current = self.session.execute(
                    select(PostingModel.processing_state).where(PostingModel.id == posting_id)
                ).scalar_one_or_none()
                if current is None:
                    raise RecordNotFoundError(f"Posting {posting_id} not found")
                if not can_transition(current, target):
                    raise InvalidStateTransition(posting_id, current, target.value)

                result = self.session.execute(
                    update(PostingModel)
                    .where(PostingModel.id == posting_id, PostingModel.processing_state == current)
                    .values(processing_state=target.value, updated_at=storage_now())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    return ProcessingState(current)

            raise DataIntegrityError(f"Posting {posting_id} state kept changing underneath the update")

        except PersistenceError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error updating state for posting {posting_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update posting state: {e}") from e

    def reset_state(self, posting_id: int) -> None:
        """Explicitly move a posting back to pending, whatever its state.

        Raises:
            RecordNotFoundError: If the posting doesn't exist
        """
        try:
            result = self.session.execute(
                update(PostingModel)
                .where(PostingModel.id == posting_id)
                .values(processing_state=ProcessingState.PENDING.value, updated_at=storage_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Posting {posting_id} not found")
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error resetting state for posting {posting_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to reset posting state: {e}") from e

    def merge_content(
        self,
        posting_id: int,
        description: Optional[str] = None,
        salary: Optional[Salary] = None,
    ) -> bool:
        """Merge enrichment results; null values never overwrite stored ones.

        Returns:
            True if any column was written

        Raises:
            RecordNotFoundError: If the posting doesn't exist
        """
        changes = _salary_columns(salary)
        if description:
            changes["description"] = description
        if not changes:
            return False

        changes["updated_at"] = storage_now()
        try:
            result = self.session.execute(
                update(PostingModel)
                .where(PostingModel.id == posting_id)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Posting {posting_id} not found")
            return True
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error merging content for posting {posting_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to merge posting content: {e}") from e

    def set_embedding(self, posting_id: int, embedding: Embedding) -> None:
        """Store (or replace) the posting's embedding with its model tag.

        Raises:
            RecordNotFoundError: If the posting doesn't exist
        """
        try:
            result = self.session.execute(
                update(PostingModel)
                .where(PostingModel.id == posting_id)
                .values(updated_at=storage_now(), **_embedding_columns(embedding))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Posting {posting_id} not found")
        except RecordNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Error storing embedding for posting {posting_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to store posting embedding: {e}") from e

    def delete(self, posting_id: int) -> bool:
        """Delete a posting; returns False if it did not exist."""
        try:
            result = self.session.execute(
                delete(PostingModel)
                .where(PostingModel.id == posting_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting posting {posting_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete posting: {e}") from e

    def get_stats(self, model: Optional[str] = None) -> Dict[str, object]:
        """Aggregate counts for dashboards.

        Args:
            model: When given, ``with_embedding`` counts only this model's vectors
        """
        try:
            by_state = {state.value: 0 for state in ProcessingState}
            rows = self.session.execute(
                select(PostingModel.processing_state, func.count()).group_by(PostingModel.processing_state)
            ).all()
            for state, count in rows:
                by_state[state] = count

            def count_where(*conditions) -> int:
                return self.session.execute(
                    select(func.count()).select_from(PostingModel).where(*conditions)
                ).scalar_one()

            embedded = [PostingModel.embedding.is_not(None)]
            if model:
                embedded.append(PostingModel.embedding_model == model)

            return {
                "total": sum(by_state.values()),
                "by_state": by_state,
                "blacklisted": count_where(PostingModel.blacklisted.is_(True)),
                "with_description": count_where(PostingModel.description.is_not(None)),
                "with_salary": count_where(
                    or_(PostingModel.salary_min.is_not(None), PostingModel.salary_max.is_not(None))
                ),
                "with_embedding": count_where(*embedded),
            }
        except SQLAlchemyError as e:
            logger.error(f"Error computing posting stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute posting stats: {e}") from e


class KeywordRepository:
    """Repository for blacklist keywords."""

    def __init__(self, session: Session):
        self.session = session

    def replace_all(self, texts: Iterable[str]) -> List[Keyword]:
        """Delete every keyword and insert ``texts`` (without embeddings).

        Duplicates after stripping are inserted once, in first-seen order.
        """
        unique: List[str] = []
        for text in texts:
            stripped = text.strip()
            if stripped and stripped not in unique:
                unique.append(stripped)

        try:
            self.session.execute(delete(KeywordModel).execution_options(synchronize_session=False))
            now = storage_now()
            models = [KeywordModel(text=text, created_at=now) for text in unique]
            self.session.add_all(models)
            self.session.flush()
            return [m.to_domain() for m in models]
        except IntegrityError as e:
            logger.error(f"Integrity error replacing keywords: {e}", exc_info=True)
            raise DataIntegrityError(f"Failed to replace keywords: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error replacing keywords: {e}", exc_info=True)
            raise PersistenceError(f"Failed to replace keywords: {e}") from e

    def get_by_id(self, keyword_id: int) -> Optional[Keyword]:
        """Retrieve a keyword by id, or None."""
        try:
            model = self.session.get(KeywordModel, keyword_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving keyword {keyword_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve keyword: {e}") from e

    def list_all(self) -> List[Keyword]:
        """All keywords in insertion order."""
        try:
            stmt = select(KeywordModel).order_by(KeywordModel.id)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing keywords: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list keywords: {e}") from e

    def get_with_embedding(self, model: str) -> List[Keyword]:
        """Keywords embedded by ``model``, in insertion order."""
        try:
            stmt = (
                select(KeywordModel)
                .where(KeywordModel.embedding.is_not(None), KeywordModel.embedding_model == model)
                .order_by(KeywordModel.id)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving embedded keywords: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve keywords: {e}") from e

    def get_without_embedding(self, model: str) -> List[Keyword]:
        """Keywords lacking an embedding from ``model``."""
        try:
            stmt = (
                select(KeywordModel)
                .where(
                    or_(
                        KeywordModel.embedding.is_(None),
                        KeywordModel.embedding_model.is_(None),
                        KeywordModel.embedding_model != model,
                    )
                )
                .order_by(KeywordModel.id)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving keywords without embedding: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve keywords: {e}") from e

    def set_embedding(self, keyword_id: int, embedding: Embedding) -> bool:
        """Store the keyword's embedding.

        Returns:
            False if the keyword no longer exists (replaced meanwhile)
        """
        try:
            result = self.session.execute(
                update(KeywordModel)
                .where(KeywordModel.id == keyword_id)
                .values(**_embedding_columns(embedding))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error storing embedding for keyword {keyword_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to store keyword embedding: {e}") from e


class SourceMessageRepository:
    """Repository for stored source messages."""

    def __init__(self, session: Session):
        self.session = session

    def save(self, message: SourceMessage) -> Tuple[SourceMessage, bool]:
        """Insert a message unless one with the same external id exists.

        Returns:
            Tuple of (stored message, is_new)
        """
        try:
            stmt = (
                dialect_insert(self.session, SourceMessageModel)
                .values(
                    external_id=message.external_id,
                    subject=message.subject,
                    sender=message.sender,
                    body=message.body,
                    is_job_related=message.is_job_related,
                    processed=message.processed,
                    received_at=to_storage(message.received_at),
                    created_at=storage_now(),
                )
                .on_conflict_do_nothing(index_elements=["external_id"])
                .returning(SourceMessageModel.id)
            )
            inserted = self.session.execute(stmt).first()
            stored = self.session.execute(
                select(SourceMessageModel).where(SourceMessageModel.external_id == message.external_id)
            ).scalar_one()
            return stored.to_domain(), inserted is not None
        except SQLAlchemyError as e:
            logger.error(f"Error saving message {message.external_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save message: {e}") from e

    def get_by_id(self, message_id: int) -> Optional[SourceMessage]:
        """Retrieve a message by id, or None."""
        try:
            model = self.session.get(SourceMessageModel, message_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving message {message_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve message: {e}") from e

    def known_external_ids(self, external_ids: Iterable[str]) -> set:
        """Subset of ``external_ids`` that is already stored."""
        ids = list(external_ids)
        if not ids:
            return set()
        try:
            stmt = select(SourceMessageModel.external_id).where(SourceMessageModel.external_id.in_(ids))
            return set(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error checking known messages: {e}", exc_info=True)
            raise PersistenceError(f"Failed to check known messages: {e}") from e

    def mark_processed(self, message_id: int) -> bool:
        """Flag a message as extracted.

        Returns:
            True only for the call that actually flipped the flag
        """
        try:
            result = self.session.execute(
                update(SourceMessageModel)
                .where(SourceMessageModel.id == message_id, SourceMessageModel.processed.is_(False))
                .values(processed=True, processed_at=storage_now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error marking message {message_id} processed: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark message processed: {e}") from e

    def list_unprocessed_job_related(self) -> List[SourceMessage]:
        """Job-related messages still awaiting extraction."""
        try:
            stmt = (
                select(SourceMessageModel)
                .where(SourceMessageModel.is_job_related.is_(True), SourceMessageModel.processed.is_(False))
                .order_by(SourceMessageModel.id)
            )
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing unprocessed messages: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list messages: {e}") from e

    def get_stats(self) -> Dict[str, int]:
        """Message counts: total, job_related, processed."""
        try:

            def count_where(*conditions) -> int:
                return self.session.execute(
                    select(func.count()).select_from(SourceMessageModel).where(*conditions)
                ).scalar_one()

            return {
                "total": count_where(),
                "job_related": count_where(SourceMessageModel.is_job_related.is_(True)),
                "processed": count_where(SourceMessageModel.processed.is_(True)),
            }
        except SQLAlchemyError as e:
            logger.error(f"Error computing message stats: {e}", exc_info=True)
            raise PersistenceError(f"Failed to compute message stats: {e}") from e


class PlatformRepository:
    """Repository for per-platform crawl rules."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_hostname(self, hostname: str) -> Optional[Platform]:
        """Rule for an exact hostname label, or None."""
        try:
            model = self.session.execute(
                select(PlatformModel).where(PlatformModel.hostname == hostname.lower())
            ).scalar_one_or_none()
            if model is None:
                return None
            return Platform(hostname=model.hostname, can_crawl=bool(model.can_crawl), skip_reason=model.skip_reason)
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving platform {hostname}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve platform: {e}") from e

    def list_all(self) -> List[Platform]:
        """All platform rules ordered by hostname."""
        try:
            models = self.session.execute(select(PlatformModel).order_by(PlatformModel.hostname)).scalars().all()
            return [
                Platform(hostname=m.hostname, can_crawl=bool(m.can_crawl), skip_reason=m.skip_reason)
                for m in models
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error listing platforms: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list platforms: {e}") from e

    def upsert(self, platform: Platform) -> None:
        """Create or update the rule for ``platform.hostname``."""
        now = storage_now()
        try:
            stmt = dialect_insert(self.session, PlatformModel).values(
                hostname=platform.hostname.lower(),
                can_crawl=platform.can_crawl,
                skip_reason=platform.skip_reason,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["hostname"],
                set_={
                    "can_crawl": stmt.excluded.can_crawl,
                    "skip_reason": stmt.excluded.skip_reason,
                    "updated_at": now,
                },
            )
            self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Error upserting platform {platform.hostname}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert platform: {e}") from e
