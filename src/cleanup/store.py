"""SQLite persistence for cleanup records."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Iterator, TypeVar

from .errors import NotFoundError
from .models import (
    Approval,
    AutoResolution,
    Chapter,
    CleanupJob,
    Document,
    Flag,
    Original,
    Revision,
)
from .telemetry import AiPassTelemetry

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS originals (
    document_id TEXT PRIMARY KEY REFERENCES documents(id),
    blob_id TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    source_format TEXT NOT NULL,
    captured_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS revisions (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id),
    revision_number INTEGER NOT NULL,
    blob_id TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    is_deterministic INTEGER NOT NULL,
    is_ai_assisted INTEGER NOT NULL,
    created_by TEXT NOT NULL,
    preserve_archaic INTEGER NOT NULL,
    parent_revision_id TEXT REFERENCES revisions(id),
    created_at TEXT NOT NULL,
    summary TEXT,
    UNIQUE (document_id, revision_number)
);

CREATE TABLE IF NOT EXISTS chapters (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    revision_id TEXT NOT NULL REFERENCES revisions(id),
    chapter_number INTEGER NOT NULL,
    title TEXT NOT NULL,
    type TEXT NOT NULL,
    start_offset INTEGER NOT NULL,
    end_offset INTEGER NOT NULL,
    detected_heading TEXT,
    confidence TEXT NOT NULL,
    is_ocr_corrupted INTEGER NOT NULL,
    is_user_confirmed INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chapters_revision
ON chapters(revision_id, chapter_number);

CREATE TABLE IF NOT EXISTS flags (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    revision_id TEXT NOT NULL REFERENCES revisions(id),
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    start_offset INTEGER NOT NULL,
    end_offset INTEGER NOT NULL,
    context_text TEXT NOT NULL,
    suggested_action TEXT,
    created_at TEXT NOT NULL,
    chapter_id TEXT,
    reviewer_note TEXT,
    resolved_by TEXT,
    resolved_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_flags_document_status
ON flags(document_id, status);

CREATE TABLE IF NOT EXISTS auto_resolutions (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    revision_id TEXT NOT NULL REFERENCES revisions(id),
    flag_type TEXT NOT NULL,
    start_offset INTEGER NOT NULL,
    end_offset INTEGER NOT NULL,
    before_text TEXT NOT NULL,
    after_text TEXT NOT NULL,
    confidence REAL NOT NULL,
    threshold_used REAL NOT NULL,
    rationale TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS approvals (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    revision_id TEXT NOT NULL REFERENCES revisions(id),
    approved_by TEXT NOT NULL,
    approved_at TEXT NOT NULL,
    checklist TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cleanup_jobs (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL,
    stage TEXT NOT NULL,
    progress INTEGER NOT NULL,
    queued_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    revision_id TEXT,
    chapters_detected INTEGER NOT NULL DEFAULT 0,
    flags_created INTEGER NOT NULL DEFAULT 0,
    patches_applied INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    summary TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_document_status
ON cleanup_jobs(document_id, status);

CREATE TABLE IF NOT EXISTS ai_telemetry (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL,
    revision_id TEXT,
    job_id TEXT,
    requested_model TEXT NOT NULL,
    resolved_model TEXT NOT NULL,
    fallback_used INTEGER NOT NULL,
    chunk_count INTEGER NOT NULL,
    max_chunk_chars INTEGER NOT NULL,
    overlap_chars INTEGER NOT NULL,
    total_input_chars INTEGER NOT NULL,
    processing_started_at REAL,
    processing_completed_at REAL
);
"""

_BOOL_COLUMNS = {
    "is_deterministic",
    "is_ai_assisted",
    "preserve_archaic",
    "is_ocr_corrupted",
    "is_user_confirmed",
    "fallback_used",
}


def _from_row(cls: type[T], row: sqlite3.Row) -> T:
    names = {f.name for f in fields(cls)}
    values: dict[str, Any] = {}
    for key in row.keys():
        if key not in names:
            continue
        value = row[key]
        if key in _BOOL_COLUMNS:
            value = bool(value)
        elif key == "checklist":
            value = json.loads(value)
        values[key] = value
    return cls(**values)


def _to_params(record: Any) -> dict[str, Any]:
    params = asdict(record)
    for key, value in params.items():
        if isinstance(value, bool):
            params[key] = int(value)
        elif isinstance(value, dict):
            params[key] = json.dumps(value, sort_keys=True)
    return params


class CleanupStore:
    """All cleanup records for a workspace in one SQLite database.

    Writes issued inside ``transaction()`` are committed together or not at
    all; writes outside it commit immediately.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self.conn = sqlite3.connect(self.path)
        self.conn.row_factory = sqlite3.Row
        self._depth = 0
        with self.conn:
            self.conn.executescript(SCHEMA)

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield
            self.conn.commit()
        except BaseException:
            self.conn.rollback()
            raise
        finally:
            self._depth = 0

    def _insert(self, table: str, record: Any) -> None:
        params = _to_params(record)
        columns = ", ".join(params)
        placeholders = ", ".join(f":{name}" for name in params)
        with self.transaction():
            self.conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", params)

    def _update(self, table: str, record: Any) -> None:
        params = _to_params(record)
        assignments = ", ".join(f"{name} = :{name}" for name in params if name != "id")
        with self.transaction():
            self.conn.execute(f"UPDATE {table} SET {assignments} WHERE id = :id", params)

    def _one(self, cls: type[T], sql: str, args: tuple = ()) -> T | None:
        row = self.conn.execute(sql, args).fetchone()
        return _from_row(cls, row) if row is not None else None

    def _all(self, cls: type[T], sql: str, args: tuple = ()) -> list[T]:
        return [_from_row(cls, row) for row in self.conn.execute(sql, args).fetchall()]

    # ── Documents and originals ──────────────────────────────────

    def add_document(self, document: Document) -> None:
        self._insert("documents", document)

    def get_document(self, document_id: str) -> Document:
        document = self._one(Document, "SELECT * FROM documents WHERE id = ?", (document_id,))
        if document is None:
            raise NotFoundError(f"Document not found: {document_id}")
        return document

    def list_documents(self) -> list[Document]:
        return self._all(Document, "SELECT * FROM documents ORDER BY created_at")

    def add_original(self, original: Original) -> None:
        self._insert("originals", original)

    def get_original(self, document_id: str) -> Original | None:
        return self._one(Original, "SELECT * FROM originals WHERE document_id = ?", (document_id,))

    # ── Revisions ─────────────────────────────────────────────────

    def add_revision(self, revision: Revision) -> None:
        self._insert("revisions", revision)

    def get_revision(self, revision_id: str) -> Revision:
        revision = self._one(Revision, "SELECT * FROM revisions WHERE id = ?", (revision_id,))
        if revision is None:
            raise NotFoundError(f"Revision not found: {revision_id}")
        return revision

    def get_revision_by_number(self, document_id: str, revision_number: int) -> Revision:
        revision = self._one(
            Revision,
            "SELECT * FROM revisions WHERE document_id = ? AND revision_number = ?",
            (document_id, revision_number),
        )
        if revision is None:
            raise NotFoundError(f"Revision {revision_number} not found for document {document_id}")
        return revision

    def latest_revision(self, document_id: str) -> Revision | None:
        return self._one(
            Revision,
            "SELECT * FROM revisions WHERE document_id = ? ORDER BY revision_number DESC LIMIT 1",
            (document_id,),
        )

    def list_revisions(self, document_id: str) -> list[Revision]:
        return self._all(
            Revision,
            "SELECT * FROM revisions WHERE document_id = ? ORDER BY revision_number",
            (document_id,),
        )

    # ── Chapters ──────────────────────────────────────────────────

    def add_chapters(self, chapters: list[Chapter]) -> None:
        with self.transaction():
            for chapter in chapters:
                self._insert("chapters", chapter)

    def add_chapter(self, chapter: Chapter) -> None:
        self._insert("chapters", chapter)

    def update_chapter(self, chapter: Chapter) -> None:
        self._update("chapters", chapter)

    def list_chapters(self, revision_id: str) -> list[Chapter]:
        return self._all(
            Chapter,
            "SELECT * FROM chapters WHERE revision_id = ? ORDER BY start_offset, chapter_number",
            (revision_id,),
        )

    def get_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._one(Chapter, "SELECT * FROM chapters WHERE id = ?", (chapter_id,))
        if chapter is None:
            raise NotFoundError(f"Chapter not found: {chapter_id}")
        return chapter

    # ── Flags ─────────────────────────────────────────────────────

    def add_flag(self, flag: Flag) -> None:
        self._insert("flags", flag)

    def update_flag(self, flag: Flag) -> None:
        self._update("flags", flag)

    def get_flag(self, flag_id: str) -> Flag:
        flag = self._one(Flag, "SELECT * FROM flags WHERE id = ?", (flag_id,))
        if flag is None:
            raise NotFoundError(f"Flag not found: {flag_id}")
        return flag

    def list_flags(
        self,
        document_id: str,
        status: str | None = None,
        revision_id: str | None = None,
    ) -> list[Flag]:
        sql = "SELECT * FROM flags WHERE document_id = ?"
        args: list[Any] = [document_id]
        if status is not None:
            sql += " AND status = ?"
            args.append(status)
        if revision_id is not None:
            sql += " AND revision_id = ?"
            args.append(revision_id)
        sql += " ORDER BY created_at DESC, rowid DESC"
        return self._all(Flag, sql, tuple(args))

    def count_flags_by_type(self, document_id: str, status: str) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT type, COUNT(*) AS n FROM flags WHERE document_id = ? AND status = ? GROUP BY type",
            (document_id, status),
        ).fetchall()
        return {row["type"]: row["n"] for row in rows}

    # ── Auto-resolutions ──────────────────────────────────────────

    def add_auto_resolution(self, record: AutoResolution) -> None:
        self._insert("auto_resolutions", record)

    def list_auto_resolutions(self, document_id: str, revision_id: str | None = None) -> list[AutoResolution]:
        if revision_id is None:
            return self._all(
                AutoResolution,
                "SELECT * FROM auto_resolutions WHERE document_id = ? ORDER BY created_at, rowid",
                (document_id,),
            )
        return self._all(
            AutoResolution,
            "SELECT * FROM auto_resolutions WHERE document_id = ? AND revision_id = ? ORDER BY created_at, rowid",
            (document_id, revision_id),
        )

    # ── Approvals ─────────────────────────────────────────────────

    def add_approval(self, approval: Approval) -> None:
        self._insert("approvals", approval)

    def latest_approval(self, document_id: str) -> Approval | None:
        return self._one(
            Approval,
            "SELECT * FROM approvals WHERE document_id = ? ORDER BY approved_at DESC, rowid DESC LIMIT 1",
            (document_id,),
        )

    # ── Jobs ──────────────────────────────────────────────────────

    def add_job(self, job: CleanupJob) -> None:
        self._insert("cleanup_jobs", job)

    def update_job(self, job: CleanupJob) -> None:
        self._update("cleanup_jobs", job)

    def get_job(self, job_id: str) -> CleanupJob:
        job = self._one(CleanupJob, "SELECT * FROM cleanup_jobs WHERE id = ?", (job_id,))
        if job is None:
            raise NotFoundError(f"Cleanup job not found: {job_id}")
        return job

    def active_job(self, document_id: str) -> CleanupJob | None:
        return self._one(
            CleanupJob,
            "SELECT * FROM cleanup_jobs WHERE document_id = ? AND status IN ('queued', 'running') "
            "ORDER BY queued_at DESC LIMIT 1",
            (document_id,),
        )

    def list_jobs(self, document_id: str) -> list[CleanupJob]:
        return self._all(
            CleanupJob,
            "SELECT * FROM cleanup_jobs WHERE document_id = ? ORDER BY queued_at, rowid",
            (document_id,),
        )

    # ── Telemetry ─────────────────────────────────────────────────

    def add_telemetry(
        self,
        document_id: str,
        telemetry: AiPassTelemetry,
        revision_id: str | None = None,
        job_id: str | None = None,
    ) -> None:
        params = _to_params(telemetry)
        params.update(document_id=document_id, revision_id=revision_id, job_id=job_id)
        columns = ", ".join(params)
        placeholders = ", ".join(f":{name}" for name in params)
        with self.transaction():
            self.conn.execute(f"INSERT INTO ai_telemetry ({columns}) VALUES ({placeholders})", params)

    def list_telemetry(self, document_id: str) -> list[AiPassTelemetry]:
        return self._all(
            AiPassTelemetry,
            "SELECT * FROM ai_telemetry WHERE document_id = ? ORDER BY id",
            (document_id,),
        )
