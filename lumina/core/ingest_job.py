"""Ingestion job state, stage outcomes and events.

One job covers a single "save to library" action:
1. ANALYZING: structured extraction of the search text (falls back to raw text)
2. GENERATING_ART: optional cover image (failure is absorbed)
3. COMMITTING: write the new item to the library store

Jobs live in an in-memory, lock-guarded store; events serialize to
Server-Sent Events for the import endpoint.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from lumina.core.models import SearchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Finished jobs kept for inspection; older ones are dropped on create
MAX_FINISHED_JOBS = 10


class IngestPhase(str, Enum):
    """Phases of the discover/ingest flow."""

    IDLE = "idle"
    SEARCHING = "searching"
    ANALYZING = "analyzing"
    GENERATING_ART = "generating_art"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"


# User-facing progress labels per phase
PHASE_MESSAGES: dict[IngestPhase, str] = {
    IngestPhase.SEARCHING: "Searching...",
    IngestPhase.ANALYZING: "Analyzing content...",
    IngestPhase.GENERATING_ART: "Generating AI art...",
    IngestPhase.COMMITTING: "Saving to library...",
}


class IngestStatus(str, Enum):
    """Status of an import job."""

    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestEventType(str, Enum):
    """Types of events emitted by the ingestion controller."""

    SEARCH_START = "search_start"
    SEARCH_COMPLETE = "search_complete"
    SEARCH_FAILED = "search_failed"
    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    PHASE_SKIPPED = "phase_skipped"
    IMPORT_COMPLETE = "import_complete"
    IMPORT_CANCELLED = "import_cancelled"
    IMPORT_FAILED = "import_failed"


class StageStatus(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"  # stage failed, a substitute value was used
    SKIPPED = "skipped"
    FAILED = "failed"  # hard failure, the job cannot continue


@dataclass(frozen=True)
class StageOutcome(Generic[T]):
    """Result of one pipeline stage."""

    status: StageStatus
    value: T | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: T) -> StageOutcome[T]:
        return cls(StageStatus.SUCCESS, value)

    @classmethod
    def fallback(cls, value: T | None, error: str) -> StageOutcome[T]:
        return cls(StageStatus.FALLBACK, value, error)

    @classmethod
    def skipped(cls) -> StageOutcome[T]:
        return cls(StageStatus.SKIPPED)

    @classmethod
    def failed(cls, error: str) -> StageOutcome[T]:
        return cls(StageStatus.FAILED, None, error)

    @property
    def ok(self) -> bool:
        return self.status != StageStatus.FAILED


@dataclass
class IngestEvent:
    """Event emitted during search/import for listeners and SSE streaming."""

    type: IngestEventType
    phase: IngestPhase
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        event_data = {
            "type": self.type.value,
            "phase": self.phase.value,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }
        return f"event: {self.type.value}\ndata: {json.dumps(event_data)}\n\n"


class ImportInProgressError(Exception):
    """Another import is already running for this session."""

    def __init__(self, job_id: str):
        super().__init__(f"Import {job_id} is still running")
        self.job_id = job_id


@dataclass
class IngestJob:
    """Tracks state of one import."""

    id: str
    status: IngestStatus
    phase: IngestPhase = IngestPhase.IDLE

    # Per-stage outcomes
    extraction: StageStatus | None = None
    image: StageStatus | None = None

    # Input and result
    result: SearchResult | None = field(default=None, repr=False)
    item_id: str | None = None

    # Timing
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None

    def touch(self) -> None:
        """Update last_activity timestamp."""
        self.last_activity = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "id": self.id,
            "status": self.status.value,
            "phase": self.phase.value,
            "extraction": self.extraction.value if self.extraction else None,
            "image": self.image.value if self.image else None,
            "item_id": self.item_id,
            "started_at": self.started_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "error": self.error,
        }


class IngestJobStore:
    """In-memory store for import jobs. Thread-safe.

    `create` refuses to start a second job while one is running, which keeps
    at most one import in flight per session. Only the latest
    MAX_FINISHED_JOBS finished jobs are retained.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, IngestJob] = {}
        self._lock = threading.Lock()

    def create(self, result: SearchResult | None = None) -> IngestJob:
        """Create a new running import job for `result`.

        Raises:
            ImportInProgressError: If a job is still running.
        """
        with self._lock:
            for existing in self._jobs.values():
                if existing.status in (IngestStatus.PENDING, IngestStatus.RUNNING):
                    raise ImportInProgressError(existing.id)
            self._prune()
            job = IngestJob(id=str(uuid.uuid4()), status=IngestStatus.RUNNING, result=result)
            self._jobs[job.id] = job
        return job

    def _prune(self) -> None:
        """Drop the oldest finished jobs. Must be called within lock."""
        # dict order is creation order
        finished = [
            j.id for j in self._jobs.values()
            if j.status not in (IngestStatus.PENDING, IngestStatus.RUNNING)
        ]
        for job_id in finished[: max(0, len(finished) - MAX_FINISHED_JOBS + 1)]:
            del self._jobs[job_id]

    def get(self, job_id: str) -> IngestJob | None:
        """Get job by ID."""
        with self._lock:
            return self._jobs.get(job_id)

    def update(self, job: IngestJob) -> None:
        """Update job in store."""
        job.touch()
        with self._lock:
            self._jobs[job.id] = job

    def cancel(self, job_id: str, force: bool = False) -> IngestJob | None:
        """Mark a running job as cancelled. Its result will not be committed.

        Once a job has entered COMMITTING it can no longer be cancelled,
        unless `force` is set by a consumer that stopped before the write.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if not job or job.status not in (IngestStatus.PENDING, IngestStatus.RUNNING):
                return None
            if job.phase == IngestPhase.COMMITTING and not force:
                logger.info(f"Import {job_id} is already committing, cancel refused")
                return None
            job.status = IngestStatus.CANCELLED
            job.touch()
            return job

    def begin_commit(self, job: IngestJob) -> bool:
        """Move `job` into COMMITTING unless it was cancelled. Atomic with `cancel`."""
        with self._lock:
            if job.status == IngestStatus.CANCELLED:
                return False
            job.phase = IngestPhase.COMMITTING
            job.touch()
            return True

    def is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            return job is not None and job.status == IngestStatus.CANCELLED

    def get_running(self) -> IngestJob | None:
        """Get currently running job if any."""
        with self._lock:
            for job in self._jobs.values():
                if job.status == IngestStatus.RUNNING:
                    return job
            return None

    def list_all(self) -> list[IngestJob]:
        """List all jobs, newest first."""
        with self._lock:
            return sorted(
                self._jobs.values(),
                key=lambda j: j.started_at,
                reverse=True,
            )
