"""Core domain models for postings, blacklist keywords, messages, and queue tasks.

This module defines the data structures passed between pipeline stages:
- Posting: a discovered job listing keyed by URL
- Keyword: a blacklist term with its (eventually computed) embedding
- SourceMessage: an email the postings were discovered in
- QueueTask: a unit of queued work with its delivery metadata
- PostingRemovedEvent: notification emitted when a posting is suppressed
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


class ProcessingState(str, Enum):
    """Enrichment lifecycle of a posting."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward transitions the Record Store accepts; anything else needs an explicit reset
ALLOWED_TRANSITIONS = {
    ProcessingState.PENDING: {ProcessingState.PROCESSING},
    ProcessingState.PROCESSING: {
        ProcessingState.PROCESSING,
        ProcessingState.COMPLETED,
        ProcessingState.FAILED,
    },
    ProcessingState.FAILED: {ProcessingState.PROCESSING},
    ProcessingState.COMPLETED: set(),
}


def can_transition(current: ProcessingState, target: ProcessingState) -> bool:
    """Whether ``current -> target`` is a permitted forward transition."""
    return ProcessingState(target) in ALLOWED_TRANSITIONS[ProcessingState(current)]


class TaskKind(str, Enum):
    """Kinds of queued work; each kind has its own queue and worker pool."""

    EXTRACT_FROM_MESSAGE = "extract_from_message"
    ENRICH = "enrich"
    COMPUTE_KEYWORD_EMBEDDING = "compute_keyword_embedding"


class TaskStatus(str, Enum):
    """Delivery state of a queued task."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEAD = "dead"


class Salary(BaseModel):
    """Salary estimate; every field is optional and merged independently."""

    min: Optional[float] = Field(None, ge=0)
    max: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    period: Optional[Literal["yearly", "monthly", "weekly", "daily", "hourly"]] = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        """Uppercase currency codes; blank becomes None."""
        if v is None:
            return None
        stripped = v.strip()
        return stripped.upper() if stripped else None

    def is_empty(self) -> bool:
        return self.min is None and self.max is None and self.currency is None and self.period is None


class Embedding(BaseModel):
    """A fixed-length vector tagged with the model that produced it.

    Vectors from different models live in unrelated spaces and must never be
    compared with each other.
    """

    vector: Tuple[float, ...]
    model: str = Field(..., min_length=1)

    @property
    def dimension(self) -> int:
        return len(self.vector)

    @model_validator(mode="after")
    def check_not_empty(self):
        """An embedding must have at least one component."""
        if not self.vector:
            raise ValueError("embedding vector cannot be empty")
        return self


class Posting(BaseModel):
    """A discovered job or project listing."""

    id: int
    title: str
    url: str
    url_key: str
    source_message_id: Optional[int] = None
    salary: Salary = Field(default_factory=Salary)
    description: Optional[str] = None
    embedding: Optional[Embedding] = None
    blacklisted: bool = False
    blacklist_reason: Optional[str] = None
    processing_state: ProcessingState = ProcessingState.PENDING
    created_at: datetime
    last_seen_at: datetime
    updated_at: Optional[datetime] = None

    def has_embedding_for(self, model: str) -> bool:
        return self.embedding is not None and self.embedding.model == model

    def embedding_text(self) -> str:
        """Text the posting embedding is computed from."""
        if self.description:
            return f"{self.title}\n\n{self.description}"
        return self.title


class Keyword(BaseModel):
    """A blacklist term."""

    id: int
    text: str
    embedding: Optional[Embedding] = None
    created_at: datetime

    def has_embedding_for(self, model: str) -> bool:
        return self.embedding is not None and self.embedding.model == model


class SourceMessage(BaseModel):
    """An email the pipeline reads postings from (owned by the mail collaborator)."""

    id: Optional[int] = None
    external_id: str
    subject: str = ""
    sender: Optional[str] = None
    body: str = ""
    is_job_related: bool = False
    processed: bool = False
    received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("external_id")
    @classmethod
    def strip_external_id(cls, v: str) -> str:
        """Provider ids are compared verbatim; whitespace-only ids are invalid."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("external_id cannot be empty")
        return stripped


class QueueTask(BaseModel):
    """A queued unit of work and its delivery metadata."""

    id: int
    kind: TaskKind
    subject_id: int
    status: TaskStatus
    attempts: int = 0
    max_attempts: int = 3
    next_run_at: datetime
    lease_expires_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts >= self.max_attempts


class PostingFilters(BaseModel):
    """Query filters for listing postings."""

    source_message_id: Optional[int] = None
    state: Optional[ProcessingState] = None
    include_blacklisted: bool = False
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)


class PostingRemovedEvent(BaseModel):
    """Notification that a posting left the visible set."""

    type: Literal["posting_removed"] = "posting_removed"
    id: int
    reason: str = "blacklisted"
    keyword: Optional[str] = None

    def to_message(self) -> dict:
        """Wire shape for presentation consumers."""
        return {"type": self.type, "id": self.id, "reason": self.reason}


class IncomingMessage(BaseModel):
    """A message as delivered by a mail source, before it is stored."""

    external_id: str
    subject: str = ""
    sender: Optional[str] = None
    body: str = ""
    received_at: Optional[datetime] = None


class Classification(BaseModel):
    """Verdict of a message classifier."""

    is_job_related: bool
    confidence: Literal["high", "medium", "low"] = "medium"
    matched_keywords: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class Platform(BaseModel):
    """Crawl permission for a job platform, keyed by its domain label (e.g. 'linkedin')."""

    hostname: str
    can_crawl: bool = True
    skip_reason: Optional[str] = None
