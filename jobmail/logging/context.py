"""Scoped logging context.

Fields bound here (task_id, posting_id, scan_id, ...) are merged into every log
record emitted while the scope is active. Context lives in a ContextVar, so
each worker thread carries its own fields.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("jobmail_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the fields bound in the current scope."""
    return dict(LogContextVar.get())


def push_log_context(**fields: Any) -> Token:
    """Bind additional fields and return a token for restoring the previous scope.

    Example:
        >>> token = push_log_context(task_id=12, task_kind="enrich")
        >>> pop_log_context(token)
    """
    return LogContextVar.set({**LogContextVar.get(), **fields})


def pop_log_context(token: Token) -> None:
    """Restore the scope that was active before the matching push."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Drop every bound field (mainly for tests)."""
    LogContextVar.set({})


class log_context:
    """Context manager binding log fields for the duration of a block.

    Example:
        >>> with log_context(posting_id=42):
        ...     logger.info("Fetching page")  # record carries posting_id=42
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
            self.token = None
        return False
