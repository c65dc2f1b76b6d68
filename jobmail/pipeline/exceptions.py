"""Exceptions raised by the pipeline orchestrator."""


class PipelineError(Exception):
    """Base exception for orchestration failures."""

    pass


class TaskTimeoutError(PipelineError):
    """A task handler did not finish within its kind's hard timeout."""

    def __init__(self, message: str, timeout: float):
        super().__init__(message)
        self.timeout = timeout


class UnknownTaskKind(PipelineError):
    """A task was claimed for a kind that has no registered handler."""

    pass
