"""Cleanup CLI — command-line interface for the revision engine."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DB = "cleanup.db"


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="cleanup",
        description="Revision-based cleanup of public domain texts",
    )

    # Global logging verbosity flags
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging output",
    )
    verbosity.add_argument(
        "--quiet", "-q", action="store_true",
        help="Suppress all output except warnings and errors",
    )

    # Options every subcommand shares
    workspace = argparse.ArgumentParser(add_help=False)
    workspace.add_argument(
        "--db", default=DEFAULT_DB, help=f"Path to the workspace database (default: {DEFAULT_DB})"
    )
    workspace.add_argument(
        "--profile", default=None, help="Path to a YAML cleanup profile"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    # ingest subcommand
    ingest_parser = subparsers.add_parser(
        "ingest", parents=[workspace],
        help="Register a document and capture its original text",
    )
    ingest_parser.add_argument("--file", required=True, help="Path to the source text file")
    ingest_parser.add_argument("--title", default=None, help="Document title (default: file name)")
    ingest_parser.add_argument("--id", dest="document_id", default=None, help="Document ID to use")
    ingest_parser.add_argument(
        "--format", dest="source_format", default=None,
        help="Source format: gutenberg_txt or markdown (default: from profile)",
    )

    # clean subcommand
    clean_parser = subparsers.add_parser(
        "clean", parents=[workspace],
        help="Run the deterministic cleanup pass",
    )
    clean_parser.add_argument("--document", required=True, help="Document ID")
    archaic = clean_parser.add_mutually_exclusive_group()
    archaic.add_argument(
        "--preserve-archaic", dest="preserve_archaic", action="store_true", default=None,
        help="Leave punctuation untouched",
    )
    archaic.add_argument(
        "--normalize-punctuation", dest="preserve_archaic", action="store_false",
        help="Normalize quotes, dashes and ellipses",
    )

    # ai-pass subcommand
    ai_parser = subparsers.add_parser(
        "ai-pass", parents=[workspace],
        help="Ask the configured provider for patches on the latest revision",
    )
    ai_parser.add_argument("--document", required=True, help="Document ID")

    # plan-chunks subcommand
    plan_parser = subparsers.add_parser(
        "plan-chunks", parents=[workspace],
        help="Show how the latest revision would be split for the provider",
    )
    plan_parser.add_argument("--document", required=True, help="Document ID")
    plan_parser.add_argument("--max-chunk-chars", type=int, default=None, help="Override chunk size")
    plan_parser.add_argument("--overlap", type=int, default=None, help="Override chunk overlap")

    # flags subcommand
    flags_parser = subparsers.add_parser(
        "flags", parents=[workspace],
        help="List review flags for a document",
    )
    flags_parser.add_argument("--document", required=True, help="Document ID")
    flags_parser.add_argument("--status", default=None, help="Only flags with this status")

    # resolve subcommand
    resolve_parser = subparsers.add_parser(
        "resolve", parents=[workspace],
        help="Resolve a review flag",
    )
    resolve_parser.add_argument("--flag", required=True, help="Flag ID")
    resolve_parser.add_argument(
        "--status", required=True, choices=["confirmed", "rejected", "overridden"],
        help="Resolution status",
    )
    resolve_parser.add_argument("--user", required=True, help="Reviewer ID")
    resolve_parser.add_argument("--note", default=None, help="Reviewer note")
    resolve_parser.add_argument(
        "--title", default=None,
        help="Title for the chapter created when a boundary candidate is confirmed",
    )

    # approve subcommand
    approve_parser = subparsers.add_parser(
        "approve", parents=[workspace],
        help="Approve the latest revision of a document",
    )
    approve_parser.add_argument("--document", required=True, help="Document ID")
    approve_parser.add_argument("--user", required=True, help="Reviewer ID")
    approve_parser.add_argument(
        "--check", action="append", default=[],
        help="Confirm one checklist item (repeatable)",
    )
    approve_parser.add_argument(
        "--all-checks", action="store_true", default=False,
        help="Confirm every checklist item",
    )

    # status subcommand
    status_parser = subparsers.add_parser(
        "status", parents=[workspace],
        help="Show revision, flag and approval status",
    )
    status_parser.add_argument("--document", default=None, help="Document ID (default: all documents)")

    # edit subcommand
    edit_parser = subparsers.add_parser(
        "edit", parents=[workspace],
        help="Save edited text as a manual revision",
    )
    edit_parser.add_argument("--document", required=True, help="Document ID")
    edit_parser.add_argument("--file", required=True, help="Path to the edited text")
    edit_parser.add_argument("--user", required=True, help="Editor ID")
    edit_parser.add_argument(
        "--keep-approval", action="store_true", default=False,
        help="Carry an existing approval forward to the new revision",
    )

    # rollback subcommand
    rollback_parser = subparsers.add_parser(
        "rollback", parents=[workspace],
        help="Restore an earlier revision as a new revision",
    )
    rollback_parser.add_argument("--document", required=True, help="Document ID")
    rollback_parser.add_argument("--revision", type=int, required=True, help="Revision number to restore")
    rollback_parser.add_argument("--user", required=True, help="Reviewer ID")

    # lineage subcommand
    lineage_parser = subparsers.add_parser(
        "lineage", parents=[workspace],
        help="List the revisions of a document, newest first",
    )
    lineage_parser.add_argument("--document", required=True, help="Document ID")

    # diff subcommand
    diff_parser = subparsers.add_parser(
        "diff", parents=[workspace],
        help="Show a line diff between two revisions",
    )
    diff_parser.add_argument("--document", required=True, help="Document ID")
    diff_parser.add_argument("--from", dest="from_revision", type=int, required=True, help="Older revision number")
    diff_parser.add_argument("--to", dest="to_revision", type=int, required=True, help="Newer revision number")

    return parser


def _open_engine(args: argparse.Namespace):
    """Load the profile (if any) and open the workspace engine."""
    from .engine import CleanupEngine
    from .profile import default_profile, load_profile, validate_profile

    if args.profile is None:
        profile = default_profile()
    else:
        profile = load_profile(args.profile)
        errors = validate_profile(profile)
        if errors:
            for err in errors:
                logger.error("Profile error: %s", err)
            return None
        logger.debug("Profile loaded: %s", profile.profile_id)
    return CleanupEngine.open(args.db, profile)


def cmd_ingest(args: argparse.Namespace) -> int:
    """Register a document and capture its original text.

    Returns exit code (0 = success).
    """
    source_path = Path(args.file)
    if not source_path.exists():
        logger.error("Source file not found: %s", source_path)
        return 1

    from . import read_source_text

    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        text = read_source_text(source_path)
        document = engine.ingest(
            args.title or source_path.stem,
            text,
            args.source_format or engine.profile.source_format,
            document_id=args.document_id,
        )
    finally:
        engine.close()

    logger.info("Ingested %s as document %s (%d chars)", source_path.name, document.id, len(text))
    return 0


def cmd_clean(args: argparse.Namespace) -> int:
    """Run the deterministic pass.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        outcome = engine.run_deterministic_pass(args.document, preserve_archaic=args.preserve_archaic)
    finally:
        engine.close()

    result = outcome.result
    logger.info("Revision %d created", outcome.revision.revision_number)
    logger.info("  Boilerplate stripped: %s", result.boilerplate_stripped)
    logger.info("  Lines unwrapped:      %d", result.unwrapped_count)
    logger.info("  Punctuation changes:  %d", result.punctuation_changes)
    logger.info("  Chapters detected:    %d", result.chapters_detected)
    logger.info("  Flags created:        %d", len(outcome.flags))
    return 0


def cmd_ai_pass(args: argparse.Namespace) -> int:
    """Run the AI pass.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        outcome = engine.run_ai_pass(args.document)
    finally:
        engine.close()

    if outcome.note:
        logger.info("%s", outcome.note)
    if outcome.revision is not None:
        applied = outcome.patched.apply_result
        logger.info("Revision %d created", outcome.revision.revision_number)
        logger.info("  Patches applied:  %d", len(applied.applied_patches))
        logger.info("  Patches failed:   %d", len(applied.failed_patches))
        logger.info("  Auto-resolved:    %d", len(outcome.auto_resolutions))
        logger.info("  Flags created:    %d", len(outcome.flags))
    if outcome.failed_segments:
        logger.warning("%d segment(s) failed; see revision summary", outcome.failed_segments)
    return 0


def cmd_plan_chunks(args: argparse.Namespace) -> int:
    """Log the chunk plan for the latest revision.

    Returns exit code (0 = success).
    """
    from .chunk_planner import plan_chunks

    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        latest = engine.revisions.require_latest(args.document)
        text = engine.revisions.revision_text(latest)
    finally:
        engine.close()

    chunking = engine.profile.chunking
    max_chars = args.max_chunk_chars if args.max_chunk_chars is not None else chunking.max_chunk_chars
    overlap = args.overlap if args.overlap is not None else chunking.overlap_chars
    chunks = plan_chunks(text, max_chars, overlap)

    logger.info(
        "Revision %d: %d chars -> %d chunks (max=%d, overlap=%d)",
        latest.revision_number, len(text), len(chunks), max_chars, overlap,
    )
    for i, chunk in enumerate(chunks, start=1):
        logger.info("  %3d  [%d, %d)  %d chars", i, chunk.start, chunk.end, chunk.end - chunk.start)
    return 0


def cmd_flags(args: argparse.Namespace) -> int:
    """List flags for a document.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        flags = engine.flags.list_flags(args.document, status=args.status)
    finally:
        engine.close()

    logger.info("%d flag(s)", len(flags))
    for flag in flags:
        logger.info(
            "  %s  %-30s %-10s [%d, %d)  %s",
            flag.id, flag.type, flag.status, flag.start_offset, flag.end_offset, flag.context_text[:60],
        )
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve one flag, creating a chapter when a boundary is confirmed.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        resolution, chapter = engine.resolve_flag(
            args.flag, args.status, args.user, note=args.note, chapter_title=args.title
        )
    finally:
        engine.close()

    logger.info("Flag %s is now %s", resolution.flag.id, resolution.flag.status)
    if chapter is not None:
        logger.info("Created chapter %d: %s", chapter.chapter_number, chapter.title)
    return 0


def cmd_approve(args: argparse.Namespace) -> int:
    """Approve the latest revision.

    Returns exit code (0 = success).
    """
    from .models import APPROVAL_CHECKLIST_ITEMS

    unknown = [item for item in args.check if item not in APPROVAL_CHECKLIST_ITEMS]
    if unknown:
        logger.error(
            "Unknown checklist item(s): %s. Must be one of: %s.",
            ", ".join(unknown), ", ".join(APPROVAL_CHECKLIST_ITEMS),
        )
        return 1
    confirmed = APPROVAL_CHECKLIST_ITEMS if args.all_checks else args.check
    checklist = {item: item in confirmed for item in APPROVAL_CHECKLIST_ITEMS}

    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        approval = engine.flags.approve(args.document, args.user, checklist)
        revision = engine.store.get_revision(approval.revision_id)
    finally:
        engine.close()

    logger.info("Revision %d approved by %s", revision.revision_number, approval.approved_by)
    return 0


def _log_review_data(review) -> None:
    document = review.document
    latest = review.latest_revision
    logger.info("%s  %s", document.id, document.title)
    if latest is None:
        logger.info("  No revisions yet")
        return
    logger.info(
        "  Latest revision: %d (%s%s)",
        latest.revision_number,
        latest.created_by,
        ", AI-assisted" if latest.is_ai_assisted else "",
    )
    logger.info("  Chapters: %d", len(review.chapters))
    logger.info("  Unresolved flags: %d", review.unresolved.total)
    for kind, count in sorted(review.unresolved.by_type.items()):
        logger.info("    %-30s %d", kind, count)
    approval = review.approval
    if approval.approval_valid:
        logger.info("  Approved by %s at %s", approval.approval.approved_by, approval.approval.approved_at)
    elif approval.is_approved:
        logger.info("  Approval is stale (granted on an earlier revision)")
    else:
        logger.info("  Not approved%s", "; ready for approval" if review.can_approve else "")


def cmd_status(args: argparse.Namespace) -> int:
    """Show review status for one or all documents.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        if args.document is not None:
            document_ids = [args.document]
        else:
            document_ids = [d.id for d in engine.store.list_documents()]
        reviews = [engine.review_data(document_id) for document_id in document_ids]
    finally:
        engine.close()

    if not reviews:
        logger.info("No documents in %s", args.db)
    for review in reviews:
        _log_review_data(review)
    return 0


def cmd_edit(args: argparse.Namespace) -> int:
    """Save an edited file as a manual revision.

    Returns exit code (0 = success).
    """
    edited_path = Path(args.file)
    if not edited_path.exists():
        logger.error("Edited file not found: %s", edited_path)
        return 1

    from . import read_source_text

    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        outcome = engine.save_manual_revision(
            args.document, read_source_text(edited_path), args.user, keep_approval=args.keep_approval
        )
    finally:
        engine.close()

    logger.info("Revision %d saved", outcome.revision.revision_number)
    if outcome.approval_revoked:
        logger.warning("Previous approval no longer applies; re-approve the new revision")
    elif outcome.approval_carried:
        logger.info("Approval carried forward to revision %d", outcome.revision.revision_number)
    return 0


def cmd_rollback(args: argparse.Namespace) -> int:
    """Restore an earlier revision.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        revision = engine.rollback(args.document, args.revision, args.user)
    finally:
        engine.close()

    logger.info("Revision %d restores revision %d", revision.revision_number, args.revision)
    return 0


def cmd_lineage(args: argparse.Namespace) -> int:
    """List revisions newest first.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        chain = engine.revisions.lineage(args.document)
    finally:
        engine.close()

    if not chain:
        logger.info("Document %s has no revisions yet", args.document)
    for revision in chain:
        kinds = [
            label for label, on in (
                ("deterministic", revision.is_deterministic),
                ("ai", revision.is_ai_assisted),
            ) if on
        ]
        logger.info(
            "  r%-3d %-6s %-20s %8d bytes  %s",
            revision.revision_number,
            revision.created_by,
            ",".join(kinds) or "-",
            revision.size_bytes,
            revision.summary or "",
        )
    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    """Log a unified diff between two revisions.

    Returns exit code (0 = success).
    """
    engine = _open_engine(args)
    if engine is None:
        return 1
    try:
        diff = engine.revisions.revision_diff(args.document, args.from_revision, args.to_revision)
    finally:
        engine.close()

    logger.info(
        "Revision %d -> %d: +%d -%d lines",
        diff.from_revision, diff.to_revision, diff.added_lines, diff.removed_lines,
    )
    for line in diff.unified:
        logger.info("%s", line)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # Return the exit code from argparse (0 for --help, 2 for errors)
        return e.code if isinstance(e.code, int) else 1

    # Configure root logger based on verbosity flags
    if getattr(args, "verbose", False):
        log_level = logging.DEBUG
    elif getattr(args, "quiet", False):
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
    )

    command_handlers = {
        "ingest": cmd_ingest,
        "clean": cmd_clean,
        "ai-pass": cmd_ai_pass,
        "plan-chunks": cmd_plan_chunks,
        "flags": cmd_flags,
        "resolve": cmd_resolve,
        "approve": cmd_approve,
        "status": cmd_status,
        "edit": cmd_edit,
        "rollback": cmd_rollback,
        "lineage": cmd_lineage,
        "diff": cmd_diff,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except Exception as e:
        logger.error("%s", e)
        return 1
