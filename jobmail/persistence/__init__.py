"""Persistence layer: the record store and the durable task queue tables.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - PostingRepository: postings, their state machine and embeddings
    - KeywordRepository: blacklist keywords
    - SourceMessageRepository: emails postings were discovered in
    - PlatformRepository: per-platform crawl rules
    - TaskRepository: queue task rows

Example usage:
    >>> from jobmail.persistence import init_database, get_session, PostingRepository
    >>> init_database("sqlite:///./data/jobmail.db")
    >>> with get_session() as session:
    ...     posting_id, is_new = PostingRepository(session).upsert_posting(
    ...         "https://example.com/jobs/1", "Backend Engineer"
    ...     )
"""

# Database initialization and session management
from .database import close_database, get_engine, get_session, init_database

# Repository classes
from .repositories import (
    KeywordRepository,
    PlatformRepository,
    PostingRepository,
    SourceMessageRepository,
)
from .tasks import TaskRepository

# Exceptions
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    InvalidStateTransition,
    PersistenceError,
    RecordNotFoundError,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "PostingRepository",
    "KeywordRepository",
    "SourceMessageRepository",
    "PlatformRepository",
    "TaskRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
    "InvalidStateTransition",
]
