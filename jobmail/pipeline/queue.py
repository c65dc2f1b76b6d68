"""Durable task queue backed by the queue_tasks table.

Each task kind is an independent queue. A task moves
``waiting -> active -> completed``; a failed attempt goes back to ``waiting``
with exponential backoff until its attempts run out, then it is parked as
``dead`` and kept for inspection. Claims are compare-and-set updates, so any
number of worker threads (or processes sharing the database) can poll the
same queue.
"""

from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from jobmail.config.models import AppConfig, QueueSettings
from jobmail.domain.models import QueueTask, TaskKind, TaskStatus
from jobmail.logging import get_logger
from jobmail.persistence import get_session
from jobmail.persistence.tasks import TaskRepository
from jobmail.utils.timestamps import storage_now

logger = get_logger(__name__, component="queue")

# Claim attempts per call before giving up to other workers
_MAX_CLAIM_RACES = 5


class TaskQueue:
    """Enqueue, claim and settle tasks for every task kind."""

    def __init__(self, config: Optional[AppConfig] = None, session_factory=get_session):
        """Initialize the queue.

        Args:
            config: Application config providing per-kind QueueSettings
            session_factory: Context manager factory yielding sessions
        """
        self.config = config or AppConfig()
        self._session_factory = session_factory

    def settings_for(self, kind: TaskKind) -> QueueSettings:
        return self.config.queue_settings(TaskKind(kind).value)

    def enqueue(
        self,
        kind: TaskKind,
        subject_id: int,
        unique: bool = False,
        session: Optional[Session] = None,
        delay: float = 0.0,
    ) -> QueueTask:
        """Add a task for ``subject_id``.

        Args:
            kind: Task kind (selects the queue)
            subject_id: Message, posting or keyword id the handler receives
            unique: Return the existing waiting/active task for the same
                subject instead of adding a second one
            session: Join the caller's transaction instead of opening one, so
                the task commits or rolls back with the caller's writes
            delay: Seconds before the task becomes due

        Returns:
            The new (or, with ``unique``, the existing) task
        """
        if session is not None:
            return self._enqueue(session, kind, subject_id, unique, delay)
        with self._session_factory() as own_session:
            return self._enqueue(own_session, kind, subject_id, unique, delay)

    def _enqueue(self, session: Session, kind: TaskKind, subject_id: int, unique: bool, delay: float) -> QueueTask:
        repo = TaskRepository(session)
        if unique:
            existing = repo.find_open(kind, subject_id)
            if existing is not None:
                logger.debug(
                    "Task already queued",
                    extra={"event": "queue.task.deduplicated", "task_id": existing.id, "task_kind": TaskKind(kind).value},
                )
                return existing

        task = repo.add(kind, subject_id, max_attempts=self.settings_for(kind).attempts, delay_seconds=delay)
        logger.debug(
            f"Enqueued {task.kind.value} task for {subject_id}",
            extra={"event": "queue.task.enqueued", "task_id": task.id, "task_kind": task.kind.value},
        )
        return task

    def claim(self, kind: TaskKind) -> Optional[QueueTask]:
        """Take the oldest due waiting task of ``kind``, or None if there is none.

        The claimed task is active, its attempt counted, and leased for the
        kind's timeout plus grace period.
        """
        settings = self.settings_for(kind)
        for _ in range(_MAX_CLAIM_RACES):
            with self._session_factory() as session:
                repo = TaskRepository(session)
                task_id = repo.next_due_id(kind, storage_now())
                if task_id is None:
                    return None
                task = repo.try_claim(task_id, storage_now(settings.lease_seconds))
            if task is not None:
                return task
            # Another worker won this one; look for the next
        return None

    def complete(self, task: QueueTask) -> bool:
        """Record a successful attempt; False if the lease had been lost."""
        with self._session_factory() as session:
            done = TaskRepository(session).mark_completed(task)
        if not done:
            logger.warning(
                "Task completed after its lease was reclaimed",
                extra={"event": "queue.task.stale_completion", "task_id": task.id, "task_kind": task.kind.value},
            )
        return done

    def fail(self, task: QueueTask, error) -> Optional[TaskStatus]:
        """Record a failed attempt.

        The task is rescheduled with backoff, or parked as dead once its
        attempts are exhausted.

        Returns:
            The task's new status, or None if the lease had been lost
        """
        if isinstance(error, BaseException):
            message = f"{type(error).__name__}: {error}"
        else:
            message = str(error)

        settings = self.settings_for(task.kind)
        with self._session_factory() as session:
            repo = TaskRepository(session)
            if task.is_final_attempt:
                new_status = TaskStatus.DEAD if repo.mark_dead(task, message) else None
            else:
                delay = settings.backoff_for(task.attempts)
                rescheduled = repo.reschedule(task, storage_now(delay), message)
                new_status = TaskStatus.WAITING if rescheduled else None

        extra = {
            "event": "queue.task.failed",
            "task_id": task.id,
            "task_kind": task.kind.value,
            "attempt": task.attempts,
            "max_attempts": task.max_attempts,
            "error": message,
        }
        if new_status == TaskStatus.DEAD:
            logger.error(f"Task dead after {task.attempts} attempts: {message}", extra={**extra, "event": "queue.task.dead"})
        elif new_status == TaskStatus.WAITING:
            logger.warning(f"Task attempt {task.attempts} failed, will retry: {message}", extra=extra)
        else:
            logger.warning(
                "Failure reported after the lease was reclaimed",
                extra={**extra, "event": "queue.task.stale_failure"},
            )
        return new_status

    def requeue_expired(self, on_dead: Optional[Callable[[QueueTask], Any]] = None) -> int:
        """Settle active tasks whose lease expired as failed attempts.

        Args:
            on_dead: Called with each task that this parks as dead

        Returns:
            Number of tasks rescheduled or parked as dead
        """
        with self._session_factory() as session:
            expired = TaskRepository(session).expired_active(storage_now())

        settled = 0
        for task in expired:
            status = self.fail(task, "lease expired before the task finished")
            if status is not None:
                settled += 1
            if status == TaskStatus.DEAD and on_dead is not None:
                on_dead(task)

        if settled:
            logger.info(
                f"Requeued {settled} tasks with expired leases",
                extra={"event": "queue.lease.reaped", "count": settled},
            )
        return settled

    def purge_completed(self, older_than_seconds: float) -> int:
        """Delete completed tasks older than the given age."""
        with self._session_factory() as session:
            removed = TaskRepository(session).purge_completed(storage_now(-older_than_seconds))
        if removed:
            logger.info(f"Purged {removed} completed tasks", extra={"event": "queue.purged", "count": removed})
        return removed

    def get(self, task_id: int) -> Optional[QueueTask]:
        with self._session_factory() as session:
            return TaskRepository(session).get(task_id)

    def stats(self) -> Dict[str, Dict[str, int]]:
        """Task counts per kind and status."""
        with self._session_factory() as session:
            return TaskRepository(session).counts()

    def list_dead(self, kind: Optional[TaskKind] = None, limit: int = 100) -> List[QueueTask]:
        """Tasks that exhausted their attempts, oldest first."""
        with self._session_factory() as session:
            return TaskRepository(session).list_by_status(TaskStatus.DEAD, kind=kind, limit=limit)
