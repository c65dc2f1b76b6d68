"""Scheduling of periodic mail scans and lease reaping."""

from .service import SchedulerService

__all__ = [
    "SchedulerService",
]
