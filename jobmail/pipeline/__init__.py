"""Pipeline orchestration: the task queue, worker pools and the service facade."""

from .exceptions import PipelineError, TaskTimeoutError, UnknownTaskKind
from .models import PendingWorkReport, ScanResult
from .orchestrator import Orchestrator, dead_letter_handlers, stage_handlers
from .queue import TaskQueue
from .service import PipelineService
from .workers import WorkerPool, execute_task

__all__ = [
    "TaskQueue",
    "WorkerPool",
    "execute_task",
    "Orchestrator",
    "stage_handlers",
    "dead_letter_handlers",
    "PipelineService",
    "ScanResult",
    "PendingWorkReport",
    "PipelineError",
    "TaskTimeoutError",
    "UnknownTaskKind",
]
