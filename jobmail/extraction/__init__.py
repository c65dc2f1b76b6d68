"""Extraction stage: job URLs and titles from messages."""

from .stage import ExtractionError, ExtractionOutcome, ExtractionStage
from .titles import assign_titles, find_titled_urls, title_from_subject, truncate_title
from .urls import deduplicate_urls, extract_all_urls, filter_job_urls

__all__ = [
    "ExtractionStage",
    "ExtractionOutcome",
    "ExtractionError",
    "extract_all_urls",
    "filter_job_urls",
    "deduplicate_urls",
    "find_titled_urls",
    "title_from_subject",
    "assign_titles",
    "truncate_title",
]
