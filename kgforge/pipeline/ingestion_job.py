# -*- coding: utf-8 -*-
"""
IngestionJob: handle for one submitted document.

Status moves PENDING -> PARSING -> EXTRACTING -> UPSERTING -> DONE, or to
FAILED / CANCELLED. Every transition is timestamped in history. Partial
results (parsed document, extraction, upsert report) stay attached to the job
whatever its final status.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from kgforge.utils.dataclasses import (
    CanonicalDocument,
    DocumentFormat,
    ExtractionResult,
    UpsertReport,
)


class JobStatus(Enum):
    PENDING = "pending"
    PARSING = "parsing"
    EXTRACTING = "extracting"
    UPSERTING = "upserting"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass
class IngestionJob:
    """
    Mutable job record shared between the service's stage workers.

    Only one stage works on a job at a time, so fields are written by a
    single thread; the lock guards status against cancel() from callers.
    """
    job_id: str
    source_id: str
    declared_format: str
    raw_bytes: Optional[bytes] = field(default=None, repr=False)
    status: JobStatus = JobStatus.PENDING
    history: List[Tuple[JobStatus, datetime]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    document: Optional[CanonicalDocument] = field(default=None, repr=False)
    extraction: Optional[ExtractionResult] = field(default=None, repr=False)
    report: Optional[UpsertReport] = None
    format: Optional[DocumentFormat] = None

    def __post_init__(self):
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._cancel_requested = False
        self.history.append((self.status, datetime.now(timezone.utc)))

    # ------------------------------------------------------------------
    # Transitions (service side)
    # ------------------------------------------------------------------

    def transition(self, status: JobStatus) -> bool:
        """
        Move to status unless the job already reached a terminal state.

        Returns:
            False if the job was already terminal
        """
        with self._lock:
            if self.status.is_terminal:
                return False
            self.status = status
            self.history.append((status, datetime.now(timezone.utc)))
        if status.is_terminal:
            self.raw_bytes = None
            self._done.set()
        return True

    def fail(self, error: str) -> None:
        self.error = error
        self.transition(JobStatus.FAILED)

    def should_stop(self) -> bool:
        """Stage-boundary check: marks the job CANCELLED if a cancel is pending."""
        with self._lock:
            requested = self._cancel_requested
        if requested:
            self.transition(JobStatus.CANCELLED)
        return requested or self.status.is_terminal

    # ------------------------------------------------------------------
    # Caller side
    # ------------------------------------------------------------------

    def cancel(self) -> bool:
        """
        Request cancellation. Takes effect at the next stage boundary; the
        running stage finishes and anything already upserted is kept.

        Returns:
            False if the job had already finished
        """
        with self._lock:
            if self.status.is_terminal:
                return False
            self._cancel_requested = True
            pending = self.status is JobStatus.PENDING
        if pending:
            self.transition(JobStatus.CANCELLED)
        return True

    def wait(self, timeout: Optional[float] = None) -> JobStatus:
        """Block until the job is terminal (or timeout) and return its status."""
        self._done.wait(timeout)
        return self.status

    @property
    def blocks_parsed(self) -> int:
        return len(self.document.blocks) if self.document is not None else 0

    def summary(self) -> dict:
        return {
            'job_id': self.job_id,
            'source_id': self.source_id,
            'format': self.format.value if self.format else self.declared_format,
            'status': self.status.value,
            'blocks_parsed': self.blocks_parsed,
            'entities': len(self.extraction.entities) if self.extraction else 0,
            'relationships': len(self.extraction.relationships) if self.extraction else 0,
            'skipped_blocks': len(self.extraction.skipped_blocks) if self.extraction else 0,
            'warnings': list(self.warnings),
            'error': self.error,
            'history': [(s.value, t.isoformat()) for s, t in self.history],
        }
