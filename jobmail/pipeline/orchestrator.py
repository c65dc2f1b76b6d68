"""Routes queued tasks to the pipeline stages."""

from typing import Dict, Optional

from jobmail.domain.models import QueueTask, TaskKind
from jobmail.logging import get_logger

from .exceptions import UnknownTaskKind
from .queue import TaskQueue
from .workers import DeadLetterHandler, TaskHandler, WorkerPool, execute_task, run_dead_letter

logger = get_logger(__name__, component="orchestrator")


def stage_handlers(extraction, enrichment, semantic_filter) -> Dict[TaskKind, TaskHandler]:
    """Handlers for the three task kinds, in pipeline order.

    Args:
        extraction: ExtractionStage
        enrichment: EnrichmentStage
        semantic_filter: SemanticFilter
    """
    return {
        TaskKind.EXTRACT_FROM_MESSAGE: lambda task: extraction.extract(task.subject_id),
        TaskKind.ENRICH: lambda task: enrichment.enrich(task.subject_id, final_attempt=task.is_final_attempt),
        TaskKind.COMPUTE_KEYWORD_EMBEDDING: lambda task: semantic_filter.embed_keyword(task.subject_id),
    }


def dead_letter_handlers(enrichment) -> Dict[TaskKind, DeadLetterHandler]:
    """Handlers that settle a subject once its task is parked as dead.

    An enrichment attempt cut off by the timeout never reaches its own
    failure handling, so its posting would stay ``processing``.
    """
    return {
        TaskKind.ENRICH: lambda task: enrichment.mark_abandoned(task.subject_id),
    }


class Orchestrator:
    """Owns the queue, one handler per task kind and their worker pools.

    ``start()``/``stop()`` run the pools in the background; ``drain()``
    processes due tasks synchronously in the calling thread.
    """

    def __init__(
        self,
        queue: TaskQueue,
        handlers: Dict[TaskKind, TaskHandler],
        dead_letters: Optional[Dict[TaskKind, DeadLetterHandler]] = None,
    ):
        self.queue = queue
        self.handlers = {TaskKind(kind): handler for kind, handler in handlers.items()}
        self.dead_letters = {TaskKind(kind): handler for kind, handler in (dead_letters or {}).items()}
        self._pools: Dict[TaskKind, WorkerPool] = {}

    def _handler_for(self, kind: TaskKind) -> TaskHandler:
        try:
            return self.handlers[TaskKind(kind)]
        except KeyError:
            raise UnknownTaskKind(f"No handler registered for {kind}") from None

    @property
    def is_running(self) -> bool:
        return any(pool.is_running for pool in self._pools.values())

    def start(self) -> None:
        """Settle expired leases from a previous run, then start every pool."""
        self.requeue_expired()
        poll_interval = self.queue.config.queues.poll_interval
        for kind, handler in self.handlers.items():
            pool = self._pools.get(kind)
            if pool is None:
                pool = WorkerPool(
                    kind,
                    self.queue,
                    handler,
                    self.queue.settings_for(kind),
                    poll_interval,
                    on_dead=self.dead_letters.get(kind),
                )
                self._pools[kind] = pool
            pool.start()

        logger.info(
            "Orchestrator started",
            extra={"event": "orchestrator.started", "kinds": [k.value for k in self._pools]},
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop all pools; in-flight tasks finish first (bounded by ``timeout``)."""
        for pool in self._pools.values():
            pool.stop(timeout)
        logger.info("Orchestrator stopped", extra={"event": "orchestrator.stopped"})

    def process_one(self, kind: TaskKind) -> Optional[QueueTask]:
        """Claim and execute one due task of ``kind`` in the calling thread.

        Returns:
            The task that was processed, or None if nothing was due
        """
        handler = self._handler_for(kind)
        task = self.queue.claim(kind)
        if task is None:
            return None
        execute_task(
            self.queue,
            task,
            handler,
            self.queue.settings_for(kind).timeout,
            self.dead_letters.get(TaskKind(kind)),
        )
        return task

    def drain(self, max_tasks: Optional[int] = None) -> int:
        """Process due tasks of every kind until none is left.

        Kinds are served round-robin, so tasks enqueued by one stage are
        picked up in the same drain. Retries only run once their backoff has
        elapsed.

        Args:
            max_tasks: Stop after this many tasks (None = until idle)

        Returns:
            Number of tasks processed
        """
        processed = 0
        while max_tasks is None or processed < max_tasks:
            progressed = False
            for kind in self.handlers:
                if max_tasks is not None and processed >= max_tasks:
                    break
                if self.process_one(kind) is not None:
                    processed += 1
                    progressed = True
            if not progressed:
                break

        logger.info(
            f"Drained {processed} tasks",
            extra={"event": "orchestrator.drained", "processed": processed},
        )
        return processed

    def requeue_expired(self) -> int:
        """Settle tasks whose worker died or hung past its lease."""
        return self.queue.requeue_expired(on_dead=self._settle_dead)

    def _settle_dead(self, task: QueueTask) -> None:
        handler = self.dead_letters.get(TaskKind(task.kind))
        if handler is not None:
            run_dead_letter(handler, task)
