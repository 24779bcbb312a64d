"""Review flags and the approval gate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Union

from .chaptering import CHAPTER_TYPES
from .chunk_planner import find_chapter_for_position
from .decision_policy import (
    DEFAULT_THRESHOLDS,
    AmbiguityKind,
    normalize_confidence,
    normalize_threshold,
)
from .errors import ApprovalBlockedError, ConflictError, ValidationError
from .models import (
    APPROVAL_CHECKLIST_ITEMS,
    RESOLVED_FLAG_STATUSES,
    Approval,
    AutoResolution,
    Chapter,
    Flag,
    Revision,
    new_id,
    utc_now,
)
from .preprocess import FlagDraft
from .revisions import RevisionManager
from .store import CleanupStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NoFollowUp:
    """Resolution needs nothing further from the caller."""


@dataclass(frozen=True)
class CreateChapterSplit:
    """A confirmed boundary flag; the caller should materialize a chapter from its range."""
    flag: Flag


FollowUp = Union[NoFollowUp, CreateChapterSplit]


@dataclass
class Resolution:
    flag: Flag
    follow_up: FollowUp


@dataclass
class UnresolvedCounts:
    total: int
    by_type: dict[str, int] = field(default_factory=dict)


@dataclass
class ApprovalState:
    """Approval status of a document, computed against its latest revision."""
    is_approved: bool
    approval_valid: bool
    approval: Approval | None
    latest_revision_id: str | None
    unresolved_count: int

    @property
    def can_approve(self) -> bool:
        return self.latest_revision_id is not None and self.unresolved_count == 0


def _follow_up_for(flag: Flag) -> FollowUp:
    kind = AmbiguityKind(flag.type)
    if kind is AmbiguityKind.UNLABELED_BOUNDARY_CANDIDATE and flag.status == "confirmed":
        return CreateChapterSplit(flag=flag)
    return NoFollowUp()


class FlagGate:
    """Sole writer of flag status and approvals."""

    def __init__(self, store: CleanupStore, revisions: RevisionManager):
        self.store = store
        self.revisions = revisions

    # ── Creating flags ────────────────────────────────────────────

    def create_flag(
        self,
        revision: Revision,
        kind: AmbiguityKind | str,
        start_offset: int,
        end_offset: int,
        context_text: str,
        suggested_action: str | None = None,
        chapter_id: str | None = None,
    ) -> Flag:
        """Open an unresolved flag on ``revision``.

        Raises:
            ValidationError: If the kind is unknown or the range is inverted.
        """
        try:
            kind = AmbiguityKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown flag type: {kind!r}") from None
        if start_offset < 0 or end_offset < start_offset:
            raise ValidationError(f"Invalid flag range: {start_offset}-{end_offset}")

        flag = Flag(
            id=new_id(),
            document_id=revision.document_id,
            revision_id=revision.id,
            type=kind.value,
            status="unresolved",
            start_offset=start_offset,
            end_offset=end_offset,
            context_text=context_text,
            suggested_action=suggested_action,
            created_at=utc_now(),
            chapter_id=chapter_id,
        )
        self.store.add_flag(flag)
        return flag

    def create_flags_from_drafts(self, revision: Revision, drafts: Iterable[FlagDraft]) -> list[Flag]:
        """Bind deterministic-pass drafts to ``revision``, linking chapter-level drafts to their chapter."""
        chapters_by_number = {c.chapter_number: c for c in self.store.list_chapters(revision.id)}
        created: list[Flag] = []
        with self.store.transaction():
            for draft in drafts:
                chapter = chapters_by_number.get(draft.chapter_number) if draft.chapter_number else None
                created.append(
                    self.create_flag(
                        revision,
                        draft.type,
                        draft.start_offset,
                        draft.end_offset,
                        draft.context_text,
                        draft.suggested_action,
                        chapter_id=chapter.id if chapter is not None else None,
                    )
                )
        if created:
            logger.info("Created %d review flags on revision %d", len(created), revision.revision_number)
        return created

    def record_auto_resolution(
        self,
        revision: Revision,
        kind: AmbiguityKind | str,
        start_offset: int,
        end_offset: int,
        before_text: str,
        after_text: str,
        confidence: float,
        threshold_used: float,
        rationale: str,
    ) -> AutoResolution:
        """Append an audit record for an ambiguity resolved without review.

        Confidence and threshold are normalized the same way the decision
        policy normalizes them, so stored values are always in [0, 1].
        """
        kind = AmbiguityKind(kind)
        record = AutoResolution(
            id=new_id(),
            document_id=revision.document_id,
            revision_id=revision.id,
            flag_type=kind.value,
            start_offset=start_offset,
            end_offset=end_offset,
            before_text=before_text,
            after_text=after_text,
            confidence=normalize_confidence(float(confidence)),
            threshold_used=normalize_threshold(float(threshold_used), DEFAULT_THRESHOLDS[kind]),
            rationale=rationale,
            created_at=utc_now(),
        )
        self.store.add_auto_resolution(record)
        return record

    # ── Reading flags ─────────────────────────────────────────────

    def list_flags(self, document_id: str, status: str | None = None) -> list[Flag]:
        """Flags for a document, newest first, optionally filtered by status."""
        self.store.get_document(document_id)
        return self.store.list_flags(document_id, status=status)

    def list_revision_flags(self, revision: Revision) -> list[Flag]:
        return self.store.list_flags(revision.document_id, revision_id=revision.id)

    def unresolved_counts(self, document_id: str) -> UnresolvedCounts:
        by_type = self.store.count_flags_by_type(document_id, "unresolved")
        return UnresolvedCounts(total=sum(by_type.values()), by_type=by_type)

    # ── Resolving flags ───────────────────────────────────────────

    def resolve_flag(self, flag_id: str, status: str, user_id: str, note: str | None = None) -> Resolution:
        """Move an unresolved flag to a final status.

        Returns:
            The updated flag plus the follow-up the caller must perform, if any.

        Raises:
            NotFoundError: If the flag does not exist.
            ValidationError: If ``status`` is not a final status.
            ConflictError: If the flag was already resolved.
        """
        if status not in RESOLVED_FLAG_STATUSES:
            raise ValidationError(
                f"Flag status '{status}' is not valid. Must be one of: {', '.join(RESOLVED_FLAG_STATUSES)}."
            )
        flag = self.store.get_flag(flag_id)
        if not flag.is_unresolved:
            raise ConflictError(f"Flag {flag_id} is already {flag.status}")

        flag.status = status
        flag.reviewer_note = note
        flag.resolved_by = user_id
        flag.resolved_at = utc_now()
        self.store.update_flag(flag)
        logger.info("Flag %s (%s) resolved as %s by %s", flag.id, flag.type, status, user_id)
        return Resolution(flag=flag, follow_up=_follow_up_for(flag))

    def promote_boundary_to_chapter(
        self,
        flag_id: str,
        title: str,
        user_id: str,
        chapter_type: str = "chapter",
    ) -> Chapter:
        """Turn a boundary flag into a user-confirmed chapter on the flag's revision.

        The new chapter runs from the flagged offset to the end of the chapter
        that contained it. Chapters of the same revision are not renumbered.

        Raises:
            ValidationError: If the flag is not a boundary candidate or was rejected.
        """
        flag = self.store.get_flag(flag_id)
        if flag.type != AmbiguityKind.UNLABELED_BOUNDARY_CANDIDATE.value:
            raise ValidationError(f"Flag {flag_id} is a {flag.type} flag, not a boundary candidate")
        if flag.status not in ("unresolved", "confirmed"):
            raise ValidationError(f"Flag {flag_id} was {flag.status}; it cannot become a chapter")
        if chapter_type not in CHAPTER_TYPES:
            raise ValidationError(f"Unknown chapter type: {chapter_type!r}")

        revision = self.store.get_revision(flag.revision_id)
        existing = self.store.list_chapters(revision.id)
        container = find_chapter_for_position(existing, flag.start_offset)
        if container is not None:
            end_offset = container.end_offset
        else:
            end_offset = len(self.revisions.revision_text(revision))

        chapter = Chapter(
            id=new_id(),
            document_id=revision.document_id,
            revision_id=revision.id,
            chapter_number=max((c.chapter_number for c in existing), default=0) + 1,
            title=title,
            type=chapter_type,
            start_offset=flag.start_offset,
            end_offset=end_offset,
            detected_heading=None,
            confidence="high",
            is_user_confirmed=True,
        )
        with self.store.transaction():
            if container is not None and container.start_offset < flag.start_offset:
                # The containing chapter now ends where the new one begins
                container.end_offset = flag.start_offset
                self.store.update_chapter(container)
            self.store.add_chapter(chapter)
            flag.chapter_id = chapter.id
            if flag.is_unresolved:
                flag.status = "confirmed"
                flag.resolved_by = user_id
                flag.resolved_at = utc_now()
            self.store.update_flag(flag)

        logger.info("Promoted flag %s to chapter %d (%s)", flag.id, chapter.chapter_number, title)
        return chapter

    # ── Approval ──────────────────────────────────────────────────

    def approve(self, document_id: str, user_id: str, checklist: Mapping[str, bool]) -> Approval:
        """Approve the latest revision of a document.

        Raises:
            NotFoundError: If the document has no revisions.
            ApprovalBlockedError: If any flag is unresolved or a checklist item is unconfirmed.
        """
        latest = self.revisions.require_latest(document_id)
        counts = self.unresolved_counts(document_id)
        missing = [item for item in APPROVAL_CHECKLIST_ITEMS if not checklist.get(item)]
        if counts.total or missing:
            raise ApprovalBlockedError(
                unresolved_count=counts.total,
                unresolved_by_type=counts.by_type,
                missing_items=missing,
            )
        return self._record_approval(latest, user_id, {item: True for item in APPROVAL_CHECKLIST_ITEMS})

    def carry_forward_approval(self, previous: Approval, revision: Revision, user_id: str) -> Approval:
        """Create a fresh approval for ``revision`` from one granted on an earlier revision.

        Raises:
            ApprovalBlockedError: If flags are unresolved on the document.
        """
        counts = self.unresolved_counts(revision.document_id)
        if counts.total:
            raise ApprovalBlockedError(unresolved_count=counts.total, unresolved_by_type=counts.by_type)
        return self._record_approval(revision, user_id, dict(previous.checklist))

    def _record_approval(self, revision: Revision, user_id: str, checklist: dict[str, bool]) -> Approval:
        approval = Approval(
            id=new_id(),
            document_id=revision.document_id,
            revision_id=revision.id,
            approved_by=user_id,
            approved_at=utc_now(),
            checklist=checklist,
        )
        self.store.add_approval(approval)
        logger.info(
            "Revision %d of %s approved by %s", revision.revision_number, revision.document_id, user_id
        )
        return approval

    def approval_state(self, document_id: str) -> ApprovalState:
        self.store.get_document(document_id)
        approval = self.store.latest_approval(document_id)
        latest = self.store.latest_revision(document_id)
        latest_id = latest.id if latest is not None else None
        return ApprovalState(
            is_approved=approval is not None,
            approval_valid=approval is not None and approval.revision_id == latest_id,
            approval=approval,
            latest_revision_id=latest_id,
            unresolved_count=self.unresolved_counts(document_id).total,
        )

