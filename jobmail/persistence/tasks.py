"""Repository for durable queue task rows.

Every state change of a claimed task is conditional on the attempt number the
worker holds, so a worker whose lease was reclaimed cannot overwrite the
outcome of the newer attempt.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobmail.domain.models import QueueTask, TaskKind, TaskStatus
from jobmail.utils.timestamps import storage_now

from .exceptions import PersistenceError
from .schema import QueueTaskModel

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (TaskStatus.WAITING.value, TaskStatus.ACTIVE.value)

# Error text is kept for diagnostics, not full tracebacks
_MAX_ERROR_LENGTH = 2000


def _truncate_error(error: Optional[str]) -> Optional[str]:
    if error is None:
        return None
    return error if len(error) <= _MAX_ERROR_LENGTH else error[: _MAX_ERROR_LENGTH - 3] + "..."


class TaskRepository:
    """Repository for queue_tasks rows."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, kind: TaskKind, subject_id: int, max_attempts: int, delay_seconds: float = 0.0) -> QueueTask:
        """Insert a waiting task due after ``delay_seconds``."""
        now = storage_now()
        try:
            model = QueueTaskModel(
                kind=TaskKind(kind).value,
                subject_id=subject_id,
                status=TaskStatus.WAITING.value,
                attempts=0,
                max_attempts=max_attempts,
                next_run_at=storage_now(delay_seconds) if delay_seconds else now,
                created_at=now,
                updated_at=now,
            )
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error adding {kind} task for {subject_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add task: {e}") from e

    def find_open(self, kind: TaskKind, subject_id: int) -> Optional[QueueTask]:
        """A waiting or active task for the same kind and subject, if any."""
        try:
            model = (
                self.session.execute(
                    select(QueueTaskModel)
                    .where(
                        QueueTaskModel.kind == TaskKind(kind).value,
                        QueueTaskModel.subject_id == subject_id,
                        QueueTaskModel.status.in_(_OPEN_STATUSES),
                    )
                    .order_by(QueueTaskModel.id)
                    .limit(1)
                )
                .scalars()
                .first()
            )
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error looking up open task: {e}", exc_info=True)
            raise PersistenceError(f"Failed to look up task: {e}") from e

    def next_due_id(self, kind: TaskKind, now: str) -> Optional[int]:
        """Id of the oldest due waiting task of ``kind``."""
        try:
            return (
                self.session.execute(
                    select(QueueTaskModel.id)
                    .where(
                        QueueTaskModel.kind == TaskKind(kind).value,
                        QueueTaskModel.status == TaskStatus.WAITING.value,
                        QueueTaskModel.next_run_at <= now,
                    )
                    .order_by(QueueTaskModel.next_run_at, QueueTaskModel.id)
                    .limit(1)
                )
                .scalars()
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error selecting due task: {e}", exc_info=True)
            raise PersistenceError(f"Failed to select due task: {e}") from e

    def try_claim(self, task_id: int, lease_until: str) -> Optional[QueueTask]:
        """Move a waiting task to active and count the attempt.

        Returns:
            The claimed task, or None if another worker claimed it first
        """
        try:
            result = self.session.execute(
                update(QueueTaskModel)
                .where(QueueTaskModel.id == task_id, QueueTaskModel.status == TaskStatus.WAITING.value)
                .values(
                    status=TaskStatus.ACTIVE.value,
                    attempts=QueueTaskModel.attempts + 1,
                    lease_expires_at=lease_until,
                    updated_at=storage_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            return self.get(task_id)
        except SQLAlchemyError as e:
            logger.error(f"Error claiming task {task_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to claim task: {e}") from e

    def get(self, task_id: int) -> Optional[QueueTask]:
        """Retrieve a task by id, or None."""
        try:
            model = self.session.get(QueueTaskModel, task_id, populate_existing=True)
            return model.to_domain() if model else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving task {task_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve task: {e}") from e

    def _finish(self, task: QueueTask, **values) -> bool:
        values["updated_at"] = storage_now()
        result = self.session.execute(
            update(QueueTaskModel)
            .where(
                QueueTaskModel.id == task.id,
                QueueTaskModel.status == TaskStatus.ACTIVE.value,
                QueueTaskModel.attempts == task.attempts,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def mark_completed(self, task: QueueTask) -> bool:
        """Mark the attempt successful; False if the lease was lost meanwhile."""
        try:
            return self._finish(task, status=TaskStatus.COMPLETED.value, lease_expires_at=None, last_error=None)
        except SQLAlchemyError as e:
            logger.error(f"Error completing task {task.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to complete task: {e}") from e

    def reschedule(self, task: QueueTask, run_at: str, error: Optional[str]) -> bool:
        """Put a failed attempt back in the waiting set, due at ``run_at``."""
        try:
            return self._finish(
                task,
                status=TaskStatus.WAITING.value,
                next_run_at=run_at,
                lease_expires_at=None,
                last_error=_truncate_error(error),
            )
        except SQLAlchemyError as e:
            logger.error(f"Error rescheduling task {task.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to reschedule task: {e}") from e

    def mark_dead(self, task: QueueTask, error: Optional[str]) -> bool:
        """Retain a task that exhausted its attempts for inspection."""
        try:
            return self._finish(
                task,
                status=TaskStatus.DEAD.value,
                lease_expires_at=None,
                last_error=_truncate_error(error),
            )
        except SQLAlchemyError as e:
            logger.error(f"Error marking task {task.id} dead: {e}", exc_info=True)
            raise PersistenceError(f"Failed to mark task dead: {e}") from e

    def expired_active(self, now: str) -> List[QueueTask]:
        """Active tasks whose lease ran out (their worker died or hung)."""
        try:
            models = (
                self.session.execute(
                    select(QueueTaskModel)
                    .where(
                        QueueTaskModel.status == TaskStatus.ACTIVE.value,
                        QueueTaskModel.lease_expires_at < now,
                    )
                    .order_by(QueueTaskModel.id)
                )
                .scalars()
                .all()
            )
            return [m.to_domain() for m in models]
        except SQLAlchemyError as e:
            logger.error(f"Error selecting expired tasks: {e}", exc_info=True)
            raise PersistenceError(f"Failed to select expired tasks: {e}") from e

    def counts(self, kind: Optional[TaskKind] = None) -> Dict[str, Dict[str, int]]:
        """Task counts per kind and status."""
        try:
            stmt = select(QueueTaskModel.kind, QueueTaskModel.status, func.count()).group_by(
                QueueTaskModel.kind, QueueTaskModel.status
            )
            if kind is not None:
                stmt = stmt.where(QueueTaskModel.kind == TaskKind(kind).value)

            kinds = [TaskKind(kind)] if kind is not None else list(TaskKind)
            result = {k.value: {s.value: 0 for s in TaskStatus} for k in kinds}
            for row_kind, status, count in self.session.execute(stmt).all():
                result.setdefault(row_kind, {s.value: 0 for s in TaskStatus})[status] = count
            return result
        except SQLAlchemyError as e:
            logger.error(f"Error counting tasks: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count tasks: {e}") from e

    def list_by_status(self, status: TaskStatus, kind: Optional[TaskKind] = None, limit: int = 100) -> List[QueueTask]:
        """Tasks in ``status``, oldest first."""
        try:
            stmt = select(QueueTaskModel).where(QueueTaskModel.status == TaskStatus(status).value)
            if kind is not None:
                stmt = stmt.where(QueueTaskModel.kind == TaskKind(kind).value)
            stmt = stmt.order_by(QueueTaskModel.id).limit(limit)
            return [m.to_domain() for m in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing tasks: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list tasks: {e}") from e

    def purge_completed(self, older_than: str) -> int:
        """Delete completed tasks last touched before ``older_than``."""
        try:
            result = self.session.execute(
                delete(QueueTaskModel)
                .where(
                    QueueTaskModel.status == TaskStatus.COMPLETED.value,
                    QueueTaskModel.updated_at < older_than,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error purging completed tasks: {e}", exc_info=True)
            raise PersistenceError(f"Failed to purge tasks: {e}") from e
