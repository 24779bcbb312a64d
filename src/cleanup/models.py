"""Persistent record types for documents, revisions, chapters, flags and approvals."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


FLAG_STATUSES = ("unresolved", "confirmed", "rejected", "overridden")
RESOLVED_FLAG_STATUSES = ("confirmed", "rejected", "overridden")
CREATORS = ("system", "ai", "user")
SOURCE_FORMATS = ("gutenberg_txt", "markdown")

APPROVAL_CHECKLIST_ITEMS = (
    "boilerplate_removed",
    "chapter_boundaries_verified",
    "punctuation_reviewed",
    "archaic_preserved",
)


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Document:
    id: str
    title: str
    created_at: str


@dataclass
class Original:
    """The raw input text of a document, captured once."""
    document_id: str
    blob_id: str
    size_bytes: int
    source_format: str
    captured_at: str


@dataclass
class Revision:
    """An immutable, numbered snapshot of a document's text."""
    id: str
    document_id: str
    revision_number: int
    blob_id: str
    size_bytes: int
    is_deterministic: bool
    is_ai_assisted: bool
    created_by: str
    preserve_archaic: bool
    parent_revision_id: str | None
    created_at: str
    summary: str | None = None


@dataclass
class Chapter:
    """A typed segment ``[start_offset, end_offset)`` of one revision."""
    id: str
    document_id: str
    revision_id: str
    chapter_number: int
    title: str
    type: str
    start_offset: int
    end_offset: int
    detected_heading: str | None
    confidence: str
    is_ocr_corrupted: bool = False
    is_user_confirmed: bool = False


@dataclass
class Flag:
    """A review item tied to one revision."""
    id: str
    document_id: str
    revision_id: str
    type: str
    status: str
    start_offset: int
    end_offset: int
    context_text: str
    suggested_action: str | None
    created_at: str
    chapter_id: str | None = None
    reviewer_note: str | None = None
    resolved_by: str | None = None
    resolved_at: str | None = None

    @property
    def is_unresolved(self) -> bool:
        return self.status == "unresolved"


@dataclass
class AutoResolution:
    """Audit record for an ambiguity the decision policy resolved on its own."""
    id: str
    document_id: str
    revision_id: str
    flag_type: str
    start_offset: int
    end_offset: int
    before_text: str
    after_text: str
    confidence: float
    threshold_used: float
    rationale: str
    created_at: str


@dataclass
class Approval:
    id: str
    document_id: str
    revision_id: str
    approved_by: str
    approved_at: str
    checklist: dict[str, bool] = field(default_factory=dict)


@dataclass
class CleanupJob:
    """Progress record for one deterministic or AI pass."""
    id: str
    document_id: str
    kind: str
    status: str
    stage: str
    progress: int
    queued_at: str
    started_at: str | None = None
    completed_at: str | None = None
    revision_id: str | None = None
    chapters_detected: int = 0
    flags_created: int = 0
    patches_applied: int = 0
    error: str | None = None
    summary: str | None = None
