"""Cleanup engine: runs deterministic and AI passes and exposes the review surface."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .blobs import BlobStore, FileBlobStore
from .chunk_planner import find_chapter_for_position, plan_chunks
from .decision_policy import decide, kind_for_patch_category
from .errors import ConflictError, ProviderError, ValidationError
from .flags import ApprovalState, CreateChapterSplit, FlagGate, Resolution, UnresolvedCounts
from .jobs import JobResult, StoreJobTracker, stage_update
from .models import AutoResolution, Chapter, CleanupJob, Document, Flag, Revision
from .patches import Patch, dedupe_patches, effective_confidence, offset_patches
from .preprocess import CleanupResult, build_flag_drafts, run_deterministic_cleanup
from .profile import CleanupProfile, default_profile, threshold_overrides
from .provider import NullProvider, SegmentContext, TextImprovementProvider, build_provider
from .revisions import PatchedRevision, RevisionManager
from .store import CleanupStore
from .telemetry import AiPassTelemetry, normalize_telemetry

logger = logging.getLogger(__name__)

CONTEXT_CHARS = 300


@dataclass
class DeterministicOutcome:
    job: CleanupJob
    revision: Revision
    result: CleanupResult
    flags: list[Flag] = field(default_factory=list)


@dataclass
class AiPassOutcome:
    """What an AI pass did. ``revision`` is None when nothing was applied."""
    job: CleanupJob | None
    revision: Revision | None
    patched: PatchedRevision | None = None
    flags: list[Flag] = field(default_factory=list)
    auto_resolutions: list[AutoResolution] = field(default_factory=list)
    segment_summaries: list[str] = field(default_factory=list)
    failed_segments: int = 0
    telemetry: AiPassTelemetry | None = None
    note: str | None = None


@dataclass
class ManualSaveOutcome:
    revision: Revision
    approval_revoked: bool
    approval_carried: bool


@dataclass
class ReviewData:
    """Everything a reviewer needs for one document."""
    document: Document
    latest_revision: Revision | None
    chapters: list[Chapter]
    flags: list[Flag]
    unresolved: UnresolvedCounts
    approval: ApprovalState

    @property
    def can_approve(self) -> bool:
        return self.approval.can_approve


def _shifted_offsets(patched: PatchedRevision) -> list[int]:
    """Offset in the new text of each applied patch, in ``applied_patches`` order."""
    applied = patched.apply_result.applied_patches
    # Among equal starts, the patch applied later sits first in the new text
    order = sorted(range(len(applied)), key=lambda i: (applied[i].start, -i))
    shifts = [0] * len(applied)
    delta = 0
    for i in order:
        patch = applied[i]
        shifts[i] = patch.start + delta
        delta += len(patch.replacement) - (patch.end - patch.start)
    return shifts


def _needs_review(patch: Patch, auto_apply: bool) -> bool:
    """Whether an applied patch is low-confidence and must be flagged.

    A numeric score is judged by the policy; otherwise only the ``low``
    label needs review.
    """
    if patch.confidence_score is not None and not math.isnan(patch.confidence_score):
        return not auto_apply
    return patch.confidence != "high"


class CleanupEngine:
    """Single-writer cleanup workflow for documents in one workspace.

    At most one pass per document may be active; starting another raises
    ConflictError. A pass either commits its revision, chapters, flags and
    auto-resolutions together or commits none of them.
    """

    def __init__(
        self,
        store: CleanupStore,
        blobs: BlobStore,
        profile: CleanupProfile | None = None,
        provider: TextImprovementProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.profile = profile or default_profile()
        self.revisions = RevisionManager(store, blobs)
        self.flags = FlagGate(store, self.revisions)
        self.tracker = StoreJobTracker(store)
        self.provider = provider if provider is not None else build_provider(self.profile.provider)
        self._sleep = sleep

    @classmethod
    def open(cls, db_path: str | Path, profile: CleanupProfile | None = None) -> CleanupEngine:
        """Engine over a database file, with blobs kept beside it."""
        profile = profile or default_profile()
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        blob_root = Path(profile.blob_dir)
        if not blob_root.is_absolute():
            blob_root = db_path.parent / blob_root
        return cls(CleanupStore(db_path), FileBlobStore(blob_root), profile=profile)

    def close(self) -> None:
        self.store.close()

    # ── Ingest ────────────────────────────────────────────────────

    def ingest(
        self,
        title: str,
        text: str,
        source_format: str = "gutenberg_txt",
        document_id: str | None = None,
    ) -> Document:
        """Register a document and capture its original text."""
        document = self.revisions.register_document(title, document_id)
        self.revisions.capture_original(document.id, text, source_format)
        return document

    # ── Deterministic pass ────────────────────────────────────────

    def run_deterministic_pass(self, document_id: str, preserve_archaic: bool | None = None) -> DeterministicOutcome:
        """Clean the original text and store it as the next revision.

        Raises:
            NotFoundError: If the document or its original does not exist.
            ConflictError: If another pass is active for the document.
        """
        self.store.get_document(document_id)
        job = self.tracker.enqueue(document_id, "deterministic")
        self.tracker.start(job.id)
        settings = self.profile.preprocess
        preserve = settings.preserve_archaic if preserve_archaic is None else preserve_archaic

        try:
            # 1. Load the original
            self.tracker.update_stage(job.id, stage_update("loading_original"))
            text = self.revisions.original_text(document_id)

            # 2. Run the cleanup steps, reporting each stage
            result = run_deterministic_cleanup(
                text,
                preserve_archaic=preserve,
                unwrap=settings.unwrap,
                normalize=settings.normalize_punctuation,
                on_stage=lambda stage: self.tracker.update_stage(job.id, stage_update(stage)),
            )

            # 3. Store revision, chapters and flags together
            with self.store.transaction():
                revision = self.revisions.create_revision(
                    document_id,
                    result.content,
                    created_by="system",
                    is_deterministic=True,
                    preserve_archaic=preserve,
                    chapters=result.chapters,
                    summary=(
                        f"Deterministic cleanup: {result.unwrapped_count} lines unwrapped, "
                        f"{result.punctuation_changes} punctuation changes, "
                        f"{result.chapters_detected} chapters"
                    ),
                )
                flags = self.flags.create_flags_from_drafts(revision, build_flag_drafts(result))
        except Exception as e:
            self.tracker.fail(job.id, str(e))
            raise

        self.tracker.complete(
            job.id,
            JobResult(
                revision_id=revision.id,
                chapters_detected=result.chapters_detected,
                flags_created=len(flags),
                summary=revision.summary,
            ),
        )
        return DeterministicOutcome(job=self.store.get_job(job.id), revision=revision, result=result, flags=flags)

    # ── AI pass ───────────────────────────────────────────────────

    def run_ai_pass(self, document_id: str) -> AiPassOutcome:
        """Ask the provider for patches on the latest revision and apply them.

        Segments are sent one at a time. A segment whose request fails
        contributes no patches and a note in the summary; the pass goes on.

        Raises:
            NotFoundError: If the document has no revisions.
            ConflictError: If another pass is active, or the latest revision
                is already AI-assisted.
        """
        latest = self.revisions.require_latest(document_id)
        if latest.is_ai_assisted:
            raise ConflictError(
                f"Revision {latest.revision_number} is already AI-assisted; "
                "save a manual or deterministic revision before another AI pass"
            )
        if isinstance(self.provider, NullProvider) or not self.provider.is_configured():
            logger.warning("No text-improvement provider configured; skipping AI pass")
            return AiPassOutcome(job=None, revision=None, note="No provider configured; no patches proposed")

        job = self.tracker.enqueue(document_id, "ai")
        self.tracker.start(job.id)
        chunking = self.profile.chunking
        started_ms = time.time() * 1000

        try:
            # 1. Plan segments
            self.tracker.update_stage(job.id, stage_update("ai_chunking"))
            text = self.revisions.revision_text(latest)
            chapters = self.revisions.chapters_for(latest)
            chunks = plan_chunks(text, chunking.max_chunk_chars, chunking.overlap_chars)
            logger.info("AI pass on revision %d: %d segments", latest.revision_number, len(chunks))

            # 2. Collect proposals, one segment at a time
            self.tracker.update_stage(job.id, stage_update("ai_processing"))
            proposals: list[Patch] = []
            summaries: list[str] = []
            failed = 0
            for i, chunk in enumerate(chunks):
                if i and self.profile.provider.rate_limit_delay > 0:
                    self._sleep(self.profile.provider.rate_limit_delay)
                chapter = find_chapter_for_position(chapters, chunk.start)
                context = SegmentContext(
                    chapter_title=chapter.title if chapter is not None else None,
                    chapter_number=chapter.chapter_number if chapter is not None else None,
                    total_chapters=len(chapters) or None,
                    segment_number=i + 1,
                    total_segments=len(chunks),
                    previous_context=text[max(0, chunk.start - CONTEXT_CHARS):chunk.start] or None,
                    next_context=text[chunk.end:chunk.end + CONTEXT_CHARS] or None,
                )
                try:
                    response = self.provider.propose(chunk.text, context)
                except (ProviderError, ValidationError) as e:
                    failed += 1
                    summaries.append(f"Segment {i + 1}: Error - {e}")
                    logger.warning("Segment %d/%d failed: %s", i + 1, len(chunks), e)
                    continue
                proposals.extend(offset_patches(response.patches, chunk.start))
                if response.summary:
                    summaries.append(f"Segment {i + 1}: {response.summary}")
                self.tracker.update_stage(
                    job.id, stage_update("ai_processing", 30 + (50 * (i + 1)) // len(chunks))
                )

            patches = dedupe_patches(proposals)
            telemetry = normalize_telemetry(
                requested_model=self.provider.model,
                resolved_model=self.provider.model,
                chunk_count=len(chunks),
                max_chunk_chars=chunking.max_chunk_chars,
                overlap_chars=chunking.overlap_chars,
                total_input_chars=len(text),
                processing_started_at=started_ms,
                processing_completed_at=time.time() * 1000,
            )

            # 3. Apply and record outcomes
            self.tracker.update_stage(job.id, stage_update("ai_applying_patches"))
            outcome = AiPassOutcome(
                job=None,
                revision=None,
                segment_summaries=summaries,
                failed_segments=failed,
                telemetry=telemetry,
            )
            with self.store.transaction():
                if patches:
                    patched = self.revisions.apply_patches_and_create_revision(
                        document_id,
                        patches,
                        summary="\n".join(summaries)[:2000] or None,
                    )
                    outcome.patched = patched
                    outcome.revision = patched.revision
                    outcome.flags, outcome.auto_resolutions = self._record_patch_outcomes(patched)
                else:
                    outcome.note = "Provider proposed no applicable patches"
                self.store.add_telemetry(
                    document_id,
                    telemetry,
                    revision_id=outcome.revision.id if outcome.revision is not None else None,
                    job_id=job.id,
                )
        except Exception as e:
            self.tracker.fail(job.id, str(e))
            raise

        applied = len(outcome.patched.apply_result.applied_patches) if outcome.patched else 0
        self.tracker.complete(
            job.id,
            JobResult(
                revision_id=outcome.revision.id if outcome.revision is not None else None,
                chapters_detected=len(self.revisions.chapters_for(outcome.revision)) if outcome.revision else 0,
                flags_created=len(outcome.flags),
                patches_applied=applied,
                summary=f"{applied} patches applied, {len(outcome.flags)} flags, {failed} failed segments",
            ),
        )
        outcome.job = self.store.get_job(job.id)
        return outcome

    def _record_patch_outcomes(self, patched: PatchedRevision) -> tuple[list[Flag], list[AutoResolution]]:
        """Flag low-confidence applied patches, auto-resolve the rest, and flag every failed one."""
        revision = patched.revision
        new_length = len(self.revisions.revision_text(revision))
        thresholds = threshold_overrides(self.profile)
        shifts = _shifted_offsets(patched)
        flags: list[Flag] = []
        resolutions: list[AutoResolution] = []

        for patch, start in zip(patched.apply_result.applied_patches, shifts):
            kind = kind_for_patch_category(patch.category)
            decision = decide(kind, effective_confidence(patch), thresholds)
            end = start + len(patch.replacement)
            if not _needs_review(patch, decision.auto_apply):
                resolutions.append(
                    self.flags.record_auto_resolution(
                        revision,
                        kind,
                        start,
                        end,
                        before_text=patch.original,
                        after_text=patch.replacement,
                        confidence=decision.clamped_confidence,
                        threshold_used=decision.threshold_used,
                        rationale=f"{patch.reason} ({patch.category})",
                    )
                )
            else:
                flags.append(
                    self.flags.create_flag(
                        revision,
                        kind,
                        start,
                        end,
                        f'AI suggestion: "{patch.original[:50]}" → "{patch.replacement[:50]}"',
                        f"{patch.reason} ({patch.category})",
                    )
                )

        for failed in patched.apply_result.failed_patches:
            patch = failed.patch
            start = min(max(patch.start, 0), new_length)
            end = min(max(patch.end, start), new_length)
            flags.append(
                self.flags.create_flag(
                    revision,
                    kind_for_patch_category(patch.category),
                    start,
                    end,
                    f"Failed AI patch: {failed.error}",
                    "Review patch that failed to apply",
                )
            )

        logger.info(
            "Revision %d: %d patches applied (%d auto-resolved, %d flagged), %d failed",
            revision.revision_number,
            len(patched.apply_result.applied_patches),
            len(resolutions),
            len(flags) - len(patched.apply_result.failed_patches),
            len(patched.apply_result.failed_patches),
        )
        return flags, resolutions

    # ── Review ────────────────────────────────────────────────────

    def resolve_flag(
        self,
        flag_id: str,
        status: str,
        user_id: str,
        note: str | None = None,
        chapter_title: str | None = None,
    ) -> tuple[Resolution, Chapter | None]:
        """Resolve a flag and carry out its follow-up.

        A confirmed boundary candidate becomes a chapter titled
        ``chapter_title`` (or "Untitled Section").
        """
        with self.store.transaction():
            resolution = self.flags.resolve_flag(flag_id, status, user_id, note)
            chapter = None
            if isinstance(resolution.follow_up, CreateChapterSplit):
                chapter = self.flags.promote_boundary_to_chapter(
                    resolution.follow_up.flag.id, chapter_title or "Untitled Section", user_id
                )
        return resolution, chapter

    def save_manual_revision(
        self,
        document_id: str,
        content: str,
        user_id: str,
        keep_approval: bool = False,
        summary: str | None = None,
    ) -> ManualSaveOutcome:
        """Store reviewer-edited text as the next revision.

        A valid approval on the previous revision is revoked unless
        ``keep_approval`` is set, in which case a fresh approval is recorded
        against the new revision.

        Raises:
            ApprovalBlockedError: If ``keep_approval`` is set but flags are unresolved.
        """
        before = self.flags.approval_state(document_id)
        with self.store.transaction():
            revision = self.revisions.create_manual_revision(document_id, content, user_id, summary)
            carried = False
            if before.approval_valid and keep_approval:
                self.flags.carry_forward_approval(before.approval, revision, user_id)
                carried = True
        revoked = before.approval_valid and not carried
        if revoked:
            logger.info("Approval of %s revoked by revision %d", document_id, revision.revision_number)
        return ManualSaveOutcome(revision=revision, approval_revoked=revoked, approval_carried=carried)

    def rollback(self, document_id: str, revision_number: int, user_id: str) -> Revision:
        target = self.store.get_revision_by_number(document_id, revision_number)
        return self.revisions.rollback_to_revision(document_id, target.id, user_id)

    def review_data(self, document_id: str) -> ReviewData:
        document = self.store.get_document(document_id)
        latest = self.revisions.latest_revision(document_id)
        return ReviewData(
            document=document,
            latest_revision=latest,
            chapters=self.revisions.chapters_for(latest) if latest is not None else [],
            flags=self.flags.list_flags(document_id),
            unresolved=self.flags.unresolved_counts(document_id),
            approval=self.flags.approval_state(document_id),
        )
