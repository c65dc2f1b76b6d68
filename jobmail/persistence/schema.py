"""Database schema definition and ORM models.

This module defines SQLAlchemy ORM models for the database schema and provides
conversion methods between ORM models and domain models. Timestamps are stored
as fixed-width ISO 8601 strings (see jobmail.utils.timestamps).
"""

import logging
from typing import Optional

from sqlalchemy import Boolean, Column, Float, Index, Integer, LargeBinary, String, Text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from jobmail.domain.models import (
    Embedding,
    Keyword,
    Posting,
    ProcessingState,
    QueueTask,
    Salary,
    SourceMessage,
    TaskKind,
    TaskStatus,
)
from jobmail.embeddings.exceptions import EmbeddingError
from jobmail.embeddings.vectors import decode_vector
from jobmail.utils.timestamps import from_storage, to_storage

logger = logging.getLogger(__name__)

Base = declarative_base()


def _load_embedding(row, owner: str) -> Optional[Embedding]:
    """Rebuild an Embedding from blob + tag columns.

    Undecodable blobs are reported and treated as absent, which makes the
    owner eligible for re-embedding.
    """
    if row.embedding is None or not row.embedding_model:
        return None
    try:
        vector = decode_vector(row.embedding, row.embedding_dim)
    except EmbeddingError as e:
        logger.warning(
            f"Ignoring unreadable embedding on {owner} {row.id}: {e}",
            extra={"event": "persistence.embedding.unreadable", "owner": owner, "owner_id": row.id},
        )
        return None
    return Embedding(vector=vector, model=row.embedding_model)


class PostingModel(Base):
    """ORM model for postings table.

    ``url_key`` is the natural key (hash of the normalized URL); ``url`` keeps
    the string exactly as first discovered.
    """

    __tablename__ = "postings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url_key = Column(String(64), nullable=False, unique=True)
    url = Column(Text, nullable=False)
    title = Column(Text, nullable=False)

    # Weak reference: messages may be purged independently
    source_message_id = Column(Integer, nullable=True)

    salary_min = Column(Float, nullable=True)
    salary_max = Column(Float, nullable=True)
    salary_currency = Column(String(10), nullable=True)
    salary_period = Column(String(20), nullable=True)
    description = Column(Text, nullable=True)

    embedding = Column(LargeBinary, nullable=True)
    embedding_model = Column(String(255), nullable=True)
    embedding_dim = Column(Integer, nullable=True)

    blacklisted = Column(Boolean, nullable=False, default=False)
    blacklist_reason = Column(Text, nullable=True)
    processing_state = Column(String(20), nullable=False, default=ProcessingState.PENDING.value)

    created_at = Column(String(50), nullable=False)
    last_seen_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_postings_state", "processing_state"),
        Index("idx_postings_blacklisted", "blacklisted"),
        Index("idx_postings_created", "created_at"),
        Index("idx_postings_message", "source_message_id"),
        Index("idx_postings_embedding_model", "embedding_model"),
    )

    def to_domain(self) -> Posting:
        """Convert ORM model to domain model."""
        return Posting(
            id=self.id,
            title=self.title,
            url=self.url,
            url_key=self.url_key,
            source_message_id=self.source_message_id,
            salary=Salary(
                min=self.salary_min,
                max=self.salary_max,
                currency=self.salary_currency,
                period=self.salary_period,
            ),
            description=self.description,
            embedding=_load_embedding(self, "posting"),
            blacklisted=bool(self.blacklisted),
            blacklist_reason=self.blacklist_reason,
            processing_state=ProcessingState(self.processing_state),
            created_at=from_storage(self.created_at),
            last_seen_at=from_storage(self.last_seen_at),
            updated_at=from_storage(self.updated_at),
        )


class KeywordModel(Base):
    """ORM model for blacklist keywords."""

    __tablename__ = "keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    text = Column(String(255), nullable=False, unique=True)

    embedding = Column(LargeBinary, nullable=True)
    embedding_model = Column(String(255), nullable=True)
    embedding_dim = Column(Integer, nullable=True)

    created_at = Column(String(50), nullable=False)

    def to_domain(self) -> Keyword:
        """Convert ORM model to domain model."""
        return Keyword(
            id=self.id,
            text=self.text,
            embedding=_load_embedding(self, "keyword"),
            created_at=from_storage(self.created_at),
        )


class SourceMessageModel(Base):
    """ORM model for source_messages table (emails postings were found in)."""

    __tablename__ = "source_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(255), nullable=False, unique=True)
    subject = Column(Text, nullable=False, default="")
    sender = Column(String(512), nullable=True)
    body = Column(Text, nullable=False, default="")
    is_job_related = Column(Boolean, nullable=False, default=False)
    processed = Column(Boolean, nullable=False, default=False)

    received_at = Column(String(50), nullable=True)
    created_at = Column(String(50), nullable=False)
    processed_at = Column(String(50), nullable=True)

    __table_args__ = (Index("idx_messages_pending", "is_job_related", "processed"),)

    def to_domain(self) -> SourceMessage:
        """Convert ORM model to domain model."""
        return SourceMessage(
            id=self.id,
            external_id=self.external_id,
            subject=self.subject or "",
            sender=self.sender,
            body=self.body or "",
            is_job_related=bool(self.is_job_related),
            processed=bool(self.processed),
            received_at=from_storage(self.received_at),
            created_at=from_storage(self.created_at),
        )

    @classmethod
    def from_domain(cls, message: SourceMessage, created_at: str) -> "SourceMessageModel":
        """Create ORM model from domain model."""
        return cls(
            external_id=message.external_id,
            subject=message.subject,
            sender=message.sender,
            body=message.body,
            is_job_related=message.is_job_related,
            processed=message.processed,
            received_at=to_storage(message.received_at),
            created_at=created_at,
        )


class PlatformModel(Base):
    """ORM model for platforms table (per-platform crawl permission)."""

    __tablename__ = "platforms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hostname = Column(String(255), nullable=False, unique=True)
    can_crawl = Column(Boolean, nullable=False, default=True)
    skip_reason = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=True)


class QueueTaskModel(Base):
    """ORM model for queue_tasks table (durable task queue rows)."""

    __tablename__ = "queue_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(50), nullable=False)
    subject_id = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=TaskStatus.WAITING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    next_run_at = Column(String(50), nullable=False)
    lease_expires_at = Column(String(50), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_tasks_due", "kind", "status", "next_run_at"),
        Index("idx_tasks_subject", "kind", "subject_id", "status"),
        Index("idx_tasks_lease", "status", "lease_expires_at"),
    )

    def to_domain(self) -> QueueTask:
        """Convert ORM model to domain model."""
        return QueueTask(
            id=self.id,
            kind=TaskKind(self.kind),
            subject_id=self.subject_id,
            status=TaskStatus(self.status),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            next_run_at=from_storage(self.next_run_at),
            lease_expires_at=from_storage(self.lease_expires_at),
            last_error=self.last_error,
            created_at=from_storage(self.created_at),
            updated_at=from_storage(self.updated_at),
        )


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)

        from sqlalchemy import inspect

        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(sorted(tables))}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
