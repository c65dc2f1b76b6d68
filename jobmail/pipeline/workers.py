"""Worker threads that drain one task queue."""

import threading
import time
from typing import Any, Callable, List, Optional

from jobmail.config.models import QueueSettings
from jobmail.domain.models import QueueTask, TaskKind, TaskStatus
from jobmail.logging import get_logger
from jobmail.logging.context import log_context
from jobmail.persistence.exceptions import PersistenceError
from jobmail.utils.timeouts import run_with_timeout

from .exceptions import TaskTimeoutError
from .queue import TaskQueue

logger = get_logger(__name__, component="workers")

TaskHandler = Callable[[QueueTask], Any]

# Called once a task is parked as dead, to settle the subject it was working on
DeadLetterHandler = Callable[[QueueTask], Any]

DEFAULT_CONCURRENCY = 3


def execute_task(
    queue: TaskQueue,
    task: QueueTask,
    handler: TaskHandler,
    timeout: Optional[float],
    on_dead: Optional[DeadLetterHandler] = None,
) -> bool:
    """Run ``handler`` for a claimed task and settle the task.

    Handler errors, including a hard timeout, are recorded on the task and
    never propagate; queue bookkeeping errors do. When the failure parks the
    task as dead, ``on_dead`` runs: a handler abandoned by the timeout cannot
    settle its subject itself.

    Returns:
        True if the handler succeeded
    """
    kind = TaskKind(task.kind).value
    with log_context(task_id=task.id, task_kind=kind):
        started = time.monotonic()
        try:
            run_with_timeout(
                handler,
                timeout,
                task,
                name=f"{kind}-task-{task.id}",
                error_cls=TaskTimeoutError,
            )
        except Exception as e:
            logger.warning(
                f"Task handler failed: {e}",
                extra={
                    "event": "worker.task.error",
                    "attempt": task.attempts,
                    "error_type": type(e).__name__,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
                exc_info=not isinstance(e, TaskTimeoutError),
            )
            if queue.fail(task, e) == TaskStatus.DEAD and on_dead is not None:
                run_dead_letter(on_dead, task)
            return False

        queue.complete(task)
        logger.debug(
            "Task completed",
            extra={
                "event": "worker.task.completed",
                "attempt": task.attempts,
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return True


def run_dead_letter(on_dead: DeadLetterHandler, task: QueueTask) -> None:
    """Run a dead-letter handler; its errors are logged, not raised."""
    try:
        on_dead(task)
    except Exception as e:
        # The task is already dead; the subject keeps its last state
        logger.error(
            f"Dead-letter handler failed: {e}",
            extra={"event": "worker.dead_letter.failed", "error_type": type(e).__name__},
            exc_info=True,
        )


class WorkerPool:
    """A fixed number of threads claiming and executing tasks of one kind."""

    def __init__(
        self,
        kind: TaskKind,
        queue: TaskQueue,
        handler: TaskHandler,
        settings: QueueSettings,
        poll_interval: float = 1.0,
        on_dead: Optional[DeadLetterHandler] = None,
    ):
        self.kind = TaskKind(kind)
        self.queue = queue
        self.handler = handler
        self.on_dead = on_dead
        self.settings = settings
        self.poll_interval = poll_interval
        self.concurrency = settings.concurrency or DEFAULT_CONCURRENCY
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the worker threads."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._run_worker,
                name=f"{self.kind.value}-worker-{i}",
                daemon=True,
            )
            for i in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()

        logger.info(
            f"Started {self.concurrency} {self.kind.value} workers",
            extra={
                "event": "worker.pool.started",
                "task_kind": self.kind.value,
                "concurrency": self.concurrency,
            },
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the workers to stop after their current task and wait for them.

        Args:
            timeout: Seconds to wait per thread (None waits indefinitely)
        """
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)

        still_running = [t.name for t in self._threads if t.is_alive()]
        if still_running:
            logger.warning(
                f"{len(still_running)} {self.kind.value} workers still busy at shutdown",
                extra={"event": "worker.pool.stop_timeout", "task_kind": self.kind.value, "threads": still_running},
            )
        else:
            logger.info(
                f"Stopped {self.kind.value} workers",
                extra={"event": "worker.pool.stopped", "task_kind": self.kind.value},
            )

    def _run_worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                task = self.queue.claim(self.kind)
                if task is None:
                    self._stop_event.wait(self.poll_interval)
                    continue
                execute_task(self.queue, task, self.handler, self.settings.timeout, self.on_dead)
            except PersistenceError as e:
                # The task (if any) stays leased and is picked up by the reaper
                logger.error(
                    f"Queue error in {self.kind.value} worker: {e}",
                    extra={"event": "worker.queue.error", "task_kind": self.kind.value},
                    exc_info=True,
                )
                self._stop_event.wait(self.poll_interval)
