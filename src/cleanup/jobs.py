"""Cleanup job lifecycle: statuses, stages and a store-backed tracker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from .errors import ConflictError, ValidationError
from .models import CleanupJob, new_id, utc_now
from .store import CleanupStore

logger = logging.getLogger(__name__)


JOB_KINDS = ("deterministic", "ai")

JOB_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running", "failed"}),
    "running": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}

# Lease-based ingest queue; a stale lease goes back to queued.
INGEST_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"leased", "failed"}),
    "leased": frozenset({"completed", "failed", "queued"}),
    "completed": frozenset(),
    "failed": frozenset(),
}

DETERMINISTIC_STAGES = (
    "queued",
    "loading_original",
    "boilerplate_removal",
    "paragraph_unwrap",
    "punctuation_normalization",
    "chapter_detection",
    "completed",
    "failed",
)

AI_STAGES = (
    "queued",
    "ai_chunking",
    "ai_processing",
    "ai_applying_patches",
    "completed",
    "failed",
)

STAGE_PROGRESS: dict[str, int] = {
    "queued": 0,
    "loading_original": 10,
    "boilerplate_removal": 30,
    "paragraph_unwrap": 40,
    "punctuation_normalization": 50,
    "chapter_detection": 70,
    "ai_chunking": 10,
    "ai_processing": 30,
    "ai_applying_patches": 80,
    "completed": 100,
}


def can_transition_job_status(current: str, target: str) -> bool:
    return target in JOB_STATUS_TRANSITIONS.get(current, frozenset())


def can_transition_ingest_status(current: str, target: str) -> bool:
    """True if an ingest job may move directly from ``current`` to ``target``."""
    return target in INGEST_STATUS_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class StageUpdate:
    """Progress value a pipeline step hands to the tracker."""
    stage: str
    progress: int


def stage_update(stage: str, progress: int | None = None) -> StageUpdate:
    """Build a StageUpdate, taking the default progress for ``stage`` when none is given."""
    if progress is None:
        progress = STAGE_PROGRESS.get(stage, 0)
    return StageUpdate(stage=stage, progress=max(0, min(100, progress)))


@dataclass
class JobResult:
    revision_id: str | None = None
    chapters_detected: int = 0
    flags_created: int = 0
    patches_applied: int = 0
    summary: str | None = None


class JobTracker(Protocol):
    """Receives progress for a running pass."""

    def update_stage(self, job_id: str, update: StageUpdate) -> None: ...

    def complete(self, job_id: str, result: JobResult) -> None: ...

    def fail(self, job_id: str, error: str) -> None: ...


class StoreJobTracker:
    """Job tracker persisting into the ``cleanup_jobs`` table.

    At most one job per document may be queued or running at a time.
    """

    def __init__(self, store: CleanupStore):
        self.store = store

    def enqueue(self, document_id: str, kind: str) -> CleanupJob:
        """Queue a new pass for ``document_id``.

        Raises:
            ValidationError: If ``kind`` is unknown.
            ConflictError: If a pass is already queued or running for the document.
        """
        if kind not in JOB_KINDS:
            raise ValidationError(f"Unknown job kind '{kind}'. Must be one of: {', '.join(JOB_KINDS)}.")
        with self.store.transaction():
            active = self.store.active_job(document_id)
            if active is not None:
                raise ConflictError(
                    f"Cleanup already in progress for document {document_id} "
                    f"(job {active.id}, {active.status})"
                )
            job = CleanupJob(
                id=new_id(),
                document_id=document_id,
                kind=kind,
                status="queued",
                stage="queued",
                progress=0,
                queued_at=utc_now(),
            )
            self.store.add_job(job)
        logger.debug("Queued %s job %s for document %s", kind, job.id, document_id)
        return job

    def _move(self, job: CleanupJob, status: str) -> None:
        if not can_transition_job_status(job.status, status):
            raise ValidationError(f"Job {job.id} cannot move from {job.status} to {status}")
        job.status = status

    def start(self, job_id: str) -> CleanupJob:
        job = self.store.get_job(job_id)
        self._move(job, "running")
        job.started_at = utc_now()
        self.store.update_job(job)
        return job

    def update_stage(self, job_id: str, update: StageUpdate) -> None:
        job = self.store.get_job(job_id)
        stages = DETERMINISTIC_STAGES if job.kind == "deterministic" else AI_STAGES
        if update.stage not in stages:
            raise ValidationError(f"Stage '{update.stage}' is not valid for a {job.kind} job")
        if job.status != "running":
            raise ValidationError(f"Job {job_id} is {job.status}, not running")
        job.stage = update.stage
        job.progress = update.progress
        self.store.update_job(job)
        logger.debug("Job %s: %s (%d%%)", job_id, update.stage, update.progress)

    def complete(self, job_id: str, result: JobResult) -> None:
        job = self.store.get_job(job_id)
        self._move(job, "completed")
        job.stage = "completed"
        job.progress = 100
        job.completed_at = utc_now()
        job.revision_id = result.revision_id
        job.chapters_detected = result.chapters_detected
        job.flags_created = result.flags_created
        job.patches_applied = result.patches_applied
        job.summary = result.summary
        self.store.update_job(job)

    def fail(self, job_id: str, error: str) -> None:
        job = self.store.get_job(job_id)
        self._move(job, "failed")
        job.stage = "failed"
        job.error = error
        job.completed_at = utc_now()
        self.store.update_job(job)
        logger.error("Job %s failed: %s", job_id, error)
