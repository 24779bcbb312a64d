"""Revision lineage: originals, immutable numbered snapshots and their chapters."""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field
from typing import Iterable

from .blobs import BlobStore
from .chaptering import DetectedChapter, detect_chapter_boundaries, reslice_chapters
from .errors import NotFoundError, ValidationError
from .models import SOURCE_FORMATS, Chapter, Document, Original, Revision, new_id, utc_now
from .patches import ApplyResult, Patch, apply_patches_safely
from .store import CleanupStore

logger = logging.getLogger(__name__)


@dataclass
class PatchedRevision:
    """A revision produced by applying patches to its parent."""
    parent: Revision
    revision: Revision
    apply_result: ApplyResult


@dataclass
class RevisionDiff:
    """Line-level difference between two revisions of one document."""
    from_revision: int
    to_revision: int
    added_lines: int
    removed_lines: int
    unified: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added_lines or self.removed_lines)


def _encode(text: str) -> bytes:
    return text.encode("utf-8")


class RevisionManager:
    """Sole writer of originals, revisions and their chapters.

    Revisions are append-only: each new one takes the next revision number
    and points back at the previous latest revision. Nothing here edits a
    stored revision.
    """

    def __init__(self, store: CleanupStore, blobs: BlobStore):
        self.store = store
        self.blobs = blobs

    # ── Documents and originals ──────────────────────────────────

    def register_document(self, title: str, document_id: str | None = None) -> Document:
        document = Document(id=document_id or new_id(), title=title, created_at=utc_now())
        self.store.add_document(document)
        logger.info("Registered document %s (%s)", document.id, title)
        return document

    def capture_original(self, document_id: str, text: str, source_format: str = "gutenberg_txt") -> Original:
        """Store the raw input for a document.

        Only the first capture is kept; later calls return the existing
        original unchanged.

        Raises:
            NotFoundError: If the document does not exist.
            ValidationError: If ``source_format`` is unknown.
        """
        self.store.get_document(document_id)
        existing = self.store.get_original(document_id)
        if existing is not None:
            logger.debug("Original for %s already captured; keeping it", document_id)
            return existing

        if source_format not in SOURCE_FORMATS:
            raise ValidationError(
                f"source_format '{source_format}' is not valid. Must be one of: {', '.join(SOURCE_FORMATS)}."
            )
        data = _encode(text)
        original = Original(
            document_id=document_id,
            blob_id=self.blobs.put(data),
            size_bytes=len(data),
            source_format=source_format,
            captured_at=utc_now(),
        )
        self.store.add_original(original)
        logger.info("Captured original for %s (%d bytes)", document_id, len(data))
        return original

    def original_text(self, document_id: str) -> str:
        original = self.store.get_original(document_id)
        if original is None:
            raise NotFoundError(f"No original captured for document {document_id}")
        return self.blobs.get(original.blob_id).decode("utf-8")

    # ── Reading revisions ─────────────────────────────────────────

    def revision_text(self, revision: Revision) -> str:
        return self.blobs.get(revision.blob_id).decode("utf-8")

    def latest_revision(self, document_id: str) -> Revision | None:
        return self.store.latest_revision(document_id)

    def require_latest(self, document_id: str) -> Revision:
        revision = self.store.latest_revision(document_id)
        if revision is None:
            raise NotFoundError(f"Document {document_id} has no revisions yet")
        return revision

    def lineage(self, document_id: str, revision_id: str | None = None) -> list[Revision]:
        """Walk parent links back from ``revision_id`` (default: latest) to the first revision."""
        if revision_id is None:
            current = self.store.latest_revision(document_id)
        else:
            current = self.store.get_revision(revision_id)
            if current.document_id != document_id:
                raise NotFoundError(f"Revision {revision_id} does not belong to document {document_id}")

        chain: list[Revision] = []
        while current is not None:
            chain.append(current)
            if current.parent_revision_id is None:
                break
            current = self.store.get_revision(current.parent_revision_id)
        return chain

    def chapters_for(self, revision: Revision) -> list[Chapter]:
        return self.store.list_chapters(revision.id)

    # ── Writing revisions ─────────────────────────────────────────

    def create_revision(
        self,
        document_id: str,
        content: str,
        *,
        created_by: str,
        is_deterministic: bool = False,
        is_ai_assisted: bool = False,
        preserve_archaic: bool | None = None,
        chapters: Iterable[DetectedChapter] | None = None,
        summary: str | None = None,
    ) -> Revision:
        """Append a revision after the current latest one.

        When ``chapters`` is None they are derived from the parent: re-sliced
        if the text length is unchanged, otherwise re-detected.

        Raises:
            NotFoundError: If the document does not exist.
        """
        self.store.get_document(document_id)
        data = _encode(content)
        with self.store.transaction():
            parent = self.store.latest_revision(document_id)
            if preserve_archaic is None:
                preserve_archaic = parent.preserve_archaic if parent is not None else True
            if chapters is None:
                chapters = self.derive_chapters(parent, content)

            revision = Revision(
                id=new_id(),
                document_id=document_id,
                revision_number=(parent.revision_number + 1) if parent is not None else 1,
                blob_id=self.blobs.put(data),
                size_bytes=len(data),
                is_deterministic=is_deterministic,
                is_ai_assisted=is_ai_assisted,
                created_by=created_by,
                preserve_archaic=preserve_archaic,
                parent_revision_id=parent.id if parent is not None else None,
                created_at=utc_now(),
                summary=summary,
            )
            self.store.add_revision(revision)
            self.store.add_chapters(
                [self._chapter_record(revision, detected) for detected in chapters]
            )

        logger.info(
            "Created revision %d for %s (%s, %d bytes)",
            revision.revision_number, document_id, created_by, revision.size_bytes,
        )
        return revision

    def derive_chapters(self, parent: Revision | None, content: str) -> list[DetectedChapter]:
        """Chapters for new content descending from ``parent``."""
        if parent is not None:
            parent_chapters = [self._as_detected(c) for c in self.store.list_chapters(parent.id)]
            parent_length = len(self.revision_text(parent))
            resliced = reslice_chapters(parent_chapters, parent_length, content)
            if resliced is not None:
                return resliced
            logger.warning(
                "Text length changed (%d -> %d); re-detecting chapter boundaries",
                parent_length, len(content),
            )
        return detect_chapter_boundaries(content).chapters

    def apply_patches_and_create_revision(
        self,
        document_id: str,
        patches: Iterable[Patch],
        *,
        created_by: str = "ai",
        summary: str | None = None,
    ) -> PatchedRevision:
        """Apply patches to the latest revision and store the result as a new one.

        Patches are re-checked against the latest text at this moment, not
        the text they were proposed against.
        """
        with self.store.transaction():
            parent = self.require_latest(document_id)
            result = apply_patches_safely(self.revision_text(parent), patches)
            revision = self.create_revision(
                document_id,
                result.new_content,
                created_by=created_by,
                is_ai_assisted=created_by == "ai",
                summary=summary,
            )
        return PatchedRevision(parent=parent, revision=revision, apply_result=result)

    def create_manual_revision(
        self, document_id: str, content: str, user_id: str, summary: str | None = None
    ) -> Revision:
        """Store reviewer-edited text as a new revision."""
        return self.create_revision(
            document_id,
            content,
            created_by="user",
            summary=summary or f"Manual edit by {user_id}",
        )

    def rollback_to_revision(self, document_id: str, target_revision_id: str, user_id: str) -> Revision:
        """Make an earlier revision's text current again as a brand new revision.

        The target's chapters are copied, since the content is identical.
        """
        target = self.store.get_revision(target_revision_id)
        if target.document_id != document_id:
            raise NotFoundError(f"Revision {target_revision_id} does not belong to document {document_id}")

        chapters = [self._as_detected(c) for c in self.store.list_chapters(target.id)]
        return self.create_revision(
            document_id,
            self.revision_text(target),
            created_by="user",
            is_deterministic=target.is_deterministic,
            is_ai_assisted=target.is_ai_assisted,
            preserve_archaic=target.preserve_archaic,
            chapters=chapters,
            summary=f"Rollback to revision {target.revision_number} by {user_id}",
        )

    def revision_diff(self, document_id: str, from_number: int, to_number: int, context: int = 2) -> RevisionDiff:
        """Unified line diff between two revision numbers."""
        old = self.store.get_revision_by_number(document_id, from_number)
        new = self.store.get_revision_by_number(document_id, to_number)
        unified = list(
            difflib.unified_diff(
                self.revision_text(old).splitlines(),
                self.revision_text(new).splitlines(),
                fromfile=f"revision {from_number}",
                tofile=f"revision {to_number}",
                n=context,
                lineterm="",
            )
        )
        added = sum(1 for line in unified if line.startswith("+") and not line.startswith("+++"))
        removed = sum(1 for line in unified if line.startswith("-") and not line.startswith("---"))
        return RevisionDiff(
            from_revision=from_number,
            to_revision=to_number,
            added_lines=added,
            removed_lines=removed,
            unified=unified,
        )

    # ── Chapter conversion ────────────────────────────────────────

    @staticmethod
    def _chapter_record(revision: Revision, detected: DetectedChapter) -> Chapter:
        return Chapter(
            id=new_id(),
            document_id=revision.document_id,
            revision_id=revision.id,
            chapter_number=detected.chapter_number,
            title=detected.title,
            type=detected.type,
            start_offset=detected.start_offset,
            end_offset=detected.end_offset,
            detected_heading=detected.detected_heading,
            confidence=detected.confidence,
            is_ocr_corrupted=detected.is_ocr_corrupted,
            is_user_confirmed=detected.is_user_confirmed,
        )

    @staticmethod
    def _as_detected(chapter: Chapter) -> DetectedChapter:
        return DetectedChapter(
            chapter_number=chapter.chapter_number,
            title=chapter.title,
            type=chapter.type,
            start_offset=chapter.start_offset,
            end_offset=chapter.end_offset,
            detected_heading=chapter.detected_heading,
            confidence=chapter.confidence,
            is_ocr_corrupted=chapter.is_ocr_corrupted,
            is_user_confirmed=chapter.is_user_confirmed,
        )
