"""Data models for scan results and maintenance reports."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class ScanResult:
    """
    Outcome of a single mail scan.

    Attributes:
        scan_id: Identifier attached to this scan's logs
        started_at: UTC timestamp when the scan began
        finished_at: UTC timestamp when the scan completed
        fetched: Messages returned by the mail source
        processed: Messages stored by this scan
        job_related: Stored messages classified as job related (extraction queued)
        skipped: Messages already stored by an earlier scan
        failed: Messages that could not be classified or stored
        extract_task_ids: Extraction tasks enqueued by this scan
        run_skipped: True when another scan was still running
        error: Mail source failure that aborted the scan
    """

    scan_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    fetched: int = 0
    processed: int = 0
    job_related: int = 0
    skipped: int = 0
    failed: int = 0
    extract_task_ids: List[int] = field(default_factory=list)
    run_skipped: bool = False
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def had_errors(self) -> bool:
        return self.failed > 0 or self.error is not None


@dataclass
class PendingWorkReport:
    """
    Tasks enqueued by a pending-work sweep.

    Attributes:
        messages: Unprocessed job-related messages queued for extraction
        postings: Pending or failed postings queued for enrichment
        stale_embeddings: Postings queued because their embedding is missing
            or from another model
        keywords: Keywords queued for embedding
    """

    messages: int = 0
    postings: int = 0
    stale_embeddings: int = 0
    keywords: int = 0

    @property
    def total(self) -> int:
        return self.messages + self.postings + self.stale_embeddings + self.keywords
