"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers can catch
every store failure with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Database connection or initialization failed (bad URL, unreachable file/server)."""

    pass


class RecordNotFoundError(PersistenceError):
    """A record that an operation requires does not exist.

    Optional lookups return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """A constraint was violated in a way the repository could not resolve."""

    pass


class InvalidStateTransition(PersistenceError):
    """A posting state change would move the lifecycle backwards."""

    def __init__(self, posting_id: int, current: str, target: str) -> None:
        super().__init__(f"Posting {posting_id} cannot move from '{current}' to '{target}'")
        self.posting_id = posting_id
        self.current = current
        self.target = target
