"""Tests for the durable task queue."""

import time
from datetime import timedelta

import pytest

from jobmail.config.models import AppConfig, QueueSettings, QueuesConfig
from jobmail.domain.models import TaskKind, TaskStatus
from jobmail.persistence import get_session
from jobmail.pipeline import TaskQueue
from jobmail.utils.timestamps import utc_now
from tests.helpers import make_config


@pytest.fixture
def queue(database):
    return TaskQueue(make_config())


@pytest.mark.usefixtures("database")
class TestEnqueue:
    """Tests for adding tasks."""

    def test_enqueue_waiting(self, queue):
        task = queue.enqueue(TaskKind.ENRICH, 7)

        assert task.status == TaskStatus.WAITING
        assert task.subject_id == 7
        assert task.attempts == 0
        assert task.max_attempts == 3

    def test_unique_returns_open_task(self, queue):
        first = queue.enqueue(TaskKind.ENRICH, 7, unique=True)
        second = queue.enqueue(TaskKind.ENRICH, 7, unique=True)

        assert second.id == first.id
        assert queue.stats()["enrich"]["waiting"] == 1

    def test_unique_is_per_kind(self, queue):
        enrich = queue.enqueue(TaskKind.ENRICH, 7, unique=True)
        extract = queue.enqueue(TaskKind.EXTRACT_FROM_MESSAGE, 7, unique=True)

        assert enrich.id != extract.id

    def test_unique_ignores_finished_tasks(self, queue):
        first = queue.enqueue(TaskKind.ENRICH, 7)
        queue.complete(queue.claim(TaskKind.ENRICH))

        second = queue.enqueue(TaskKind.ENRICH, 7, unique=True)

        assert second.id != first.id

    def test_without_unique_duplicates_allowed(self, queue):
        queue.enqueue(TaskKind.ENRICH, 7)
        queue.enqueue(TaskKind.ENRICH, 7)

        assert queue.stats()["enrich"]["waiting"] == 2

    def test_enqueue_joins_caller_transaction(self, queue):
        """Test a task enqueued in a rolled-back session disappears with it."""
        with pytest.raises(RuntimeError):
            with get_session() as session:
                queue.enqueue(TaskKind.ENRICH, 7, session=session)
                raise RuntimeError("abort")

        assert queue.stats()["enrich"]["waiting"] == 0

    def test_delayed_task_not_claimable(self, queue):
        queue.enqueue(TaskKind.ENRICH, 7, delay=60)

        assert queue.claim(TaskKind.ENRICH) is None


@pytest.mark.usefixtures("database")
class TestClaim:
    """Tests for claiming tasks."""

    def test_claim_oldest_first(self, queue):
        first = queue.enqueue(TaskKind.ENRICH, 1)
        queue.enqueue(TaskKind.ENRICH, 2)

        claimed = queue.claim(TaskKind.ENRICH)

        assert claimed.id == first.id
        assert claimed.status == TaskStatus.ACTIVE
        assert claimed.attempts == 1
        assert claimed.lease_expires_at > utc_now()

    def test_claim_only_matching_kind(self, queue):
        queue.enqueue(TaskKind.EXTRACT_FROM_MESSAGE, 1)

        assert queue.claim(TaskKind.ENRICH) is None
        assert queue.claim(TaskKind.EXTRACT_FROM_MESSAGE) is not None

    def test_claimed_task_not_claimed_twice(self, queue):
        queue.enqueue(TaskKind.ENRICH, 1)

        assert queue.claim(TaskKind.ENRICH) is not None
        assert queue.claim(TaskKind.ENRICH) is None

    def test_empty_queue(self, queue):
        assert queue.claim(TaskKind.ENRICH) is None


@pytest.mark.usefixtures("database")
class TestSettle:
    """Tests for completing and failing tasks."""

    def test_complete(self, queue):
        queue.enqueue(TaskKind.ENRICH, 1)
        task = queue.claim(TaskKind.ENRICH)

        assert queue.complete(task)
        assert queue.get(task.id).status == TaskStatus.COMPLETED

    def test_fail_reschedules_with_error(self, queue):
        queue.enqueue(TaskKind.ENRICH, 1)
        task = queue.claim(TaskKind.ENRICH)

        assert queue.fail(task, ValueError("bad page")) == TaskStatus.WAITING

        stored = queue.get(task.id)
        assert stored.status == TaskStatus.WAITING
        assert stored.last_error == "ValueError: bad page"
        assert stored.attempts == 1

    def test_retry_after_backoff(self, database):
        """Test a failed task is not due again until its backoff has passed."""
        settings = QueueSettings(attempts=3, backoff=60, timeout=5)
        queue = TaskQueue(AppConfig(queues=QueuesConfig(enrich=settings)))
        queue.enqueue(TaskKind.ENRICH, 1)
        task = queue.claim(TaskKind.ENRICH)

        queue.fail(task, "boom")

        assert queue.claim(TaskKind.ENRICH) is None
        assert queue.get(task.id).next_run_at > utc_now() + timedelta(seconds=50)

    def test_final_attempt_goes_dead(self, queue):
        queue.enqueue(TaskKind.ENRICH, 1)
        statuses = []
        for _ in range(3):
            task = queue.claim(TaskKind.ENRICH)
            statuses.append(queue.fail(task, "boom"))

        assert statuses == [TaskStatus.WAITING, TaskStatus.WAITING, TaskStatus.DEAD]
        assert queue.claim(TaskKind.ENRICH) is None
        dead = queue.list_dead()
        assert [t.attempts for t in dead] == [3]
        assert dead[0].last_error == "boom"

    def test_stale_completion_rejected(self, queue):
        """Test a worker whose lease was reclaimed cannot overwrite the newer attempt."""
        queue.enqueue(TaskKind.ENRICH, 1)
        stale = queue.claim(TaskKind.ENRICH)
        queue.fail(stale, "lease expired before the task finished")
        fresh = queue.claim(TaskKind.ENRICH)

        assert not queue.complete(stale)
        assert queue.fail(stale, "late error") is None
        assert queue.complete(fresh)
        assert queue.get(fresh.id).status == TaskStatus.COMPLETED

    def test_long_errors_truncated(self, queue):
        queue.enqueue(TaskKind.ENRICH, 1)
        task = queue.claim(TaskKind.ENRICH)

        queue.fail(task, "x" * 5000)

        assert len(queue.get(task.id).last_error) == 2000


@pytest.mark.usefixtures("database")
class TestLeases:
    """Tests for expired lease handling."""

    def test_requeue_expired(self):
        settings = QueueSettings(attempts=3, backoff=0, timeout=0.001, lease_grace=0)
        queue = TaskQueue(AppConfig(queues=QueuesConfig(enrich=settings)))
        queue.enqueue(TaskKind.ENRICH, 1)
        task = queue.claim(TaskKind.ENRICH)

        # Lease of one millisecond
        time.sleep(0.01)
        assert queue.requeue_expired() == 1

        stored = queue.get(task.id)
        assert stored.status == TaskStatus.WAITING
        assert "lease expired" in stored.last_error

    def test_live_lease_untouched(self, queue):
        queue.enqueue(TaskKind.ENRICH, 1)
        queue.claim(TaskKind.ENRICH)

        assert queue.requeue_expired() == 0


@pytest.mark.usefixtures("database")
class TestMaintenance:
    """Tests for stats and purging."""

    def test_stats_cover_every_kind(self, queue):
        stats = queue.stats()

        assert set(stats) == {k.value for k in TaskKind}
        assert set(stats["enrich"]) == {s.value for s in TaskStatus}

    def test_purge_completed(self, queue):
        queue.enqueue(TaskKind.ENRICH, 1)
        queue.complete(queue.claim(TaskKind.ENRICH))

        assert queue.purge_completed(3600) == 0
        assert queue.purge_completed(-1) == 1
        assert queue.stats()["enrich"]["completed"] == 0

    def test_settings_for_kind(self, queue):
        assert queue.settings_for(TaskKind.ENRICH).backoff == 0
        assert queue.settings_for("extract_from_message").attempts == 3
