"""Periodic mail scans and lease reaping."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from jobmail.logging import get_logger

logger = get_logger(__name__, component="scheduler")

SCAN_JOB_ID = "mail-scan"
REAPER_JOB_ID = "lease-reaper"


class SchedulerService:
    """
    Wraps APScheduler to run the mail scan and the lease reaper at intervals.

    Uses BackgroundScheduler so jobs run on scheduler threads while the main
    thread handles signals and coordinates shutdown. Each job has
    ``max_instances=1``, so a slow scan is never overlapped by the next one.
    """

    def __init__(
        self,
        scan_callable: Callable[[], object],
        scan_interval_seconds: float,
        reaper_callable: Optional[Callable[[], object]] = None,
        reaper_interval_seconds: float = 60.0,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            scan_callable: Called on each scan tick (e.g. service.trigger_scan)
            scan_interval_seconds: Seconds between scans
            reaper_callable: Called on each reaper tick (e.g. orchestrator.requeue_expired)
            reaper_interval_seconds: Seconds between reaper runs
            shutdown_event: Optional event to set on shutdown for coordination
        """
        self.scan_callable = scan_callable
        self.scan_interval_seconds = scan_interval_seconds
        self.reaper_callable = reaper_callable
        self.reaper_interval_seconds = reaper_interval_seconds
        self.shutdown_event = shutdown_event

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": max(int(scan_interval_seconds), 1),
            },
            timezone=timezone.utc,
        )

    def start(self) -> None:
        """
        Register the jobs and start the scheduler.

        The first scan runs immediately; the reaper first runs after one
        interval.
        """
        next_run = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=self.scan_callable,
            trigger=IntervalTrigger(seconds=self.scan_interval_seconds, timezone=timezone.utc),
            id=SCAN_JOB_ID,
            name="Mail scan",
            replace_existing=True,
            next_run_time=next_run,
        )

        if self.reaper_callable is not None:
            self.scheduler.add_job(
                func=self.reaper_callable,
                trigger=IntervalTrigger(seconds=self.reaper_interval_seconds, timezone=timezone.utc),
                id=REAPER_JOB_ID,
                name="Expired lease reaper",
                replace_existing=True,
            )

        self.scheduler.start()

        logger.info(
            f"Scheduler started with scan interval: {self.scan_interval_seconds:g} seconds",
            extra={
                "event": "scheduler.started",
                "interval_seconds": self.scan_interval_seconds,
                "reaper_interval_seconds": self.reaper_interval_seconds if self.reaper_callable else None,
                "next_run_time": next_run.isoformat(),
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def trigger_now(self) -> None:
        """Run a scan synchronously in the current thread."""
        logger.info("Triggering immediate scan", extra={"event": "scheduler.trigger_now"})
        self.scan_callable()

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_time(self) -> Optional[datetime]:
        """Next scheduled scan, or None if the scan job is not registered."""
        job = self.scheduler.get_job(SCAN_JOB_ID)
        return job.next_run_time if job else None
