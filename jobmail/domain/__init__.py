"""Domain models shared across the pipeline."""

from .models import (
    ALLOWED_TRANSITIONS,
    Classification,
    Embedding,
    IncomingMessage,
    Keyword,
    Platform,
    Posting,
    PostingFilters,
    PostingRemovedEvent,
    ProcessingState,
    QueueTask,
    Salary,
    SourceMessage,
    TaskKind,
    TaskStatus,
    can_transition,
)

__all__ = [
    "Posting",
    "Salary",
    "Embedding",
    "Keyword",
    "Platform",
    "SourceMessage",
    "IncomingMessage",
    "Classification",
    "QueueTask",
    "PostingFilters",
    "PostingRemovedEvent",
    "ProcessingState",
    "TaskKind",
    "TaskStatus",
    "ALLOWED_TRANSITIONS",
    "can_transition",
]
