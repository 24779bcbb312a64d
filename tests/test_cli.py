"""Tests for the cleanup CLI."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import pytest

from cleanup.cli import build_parser, main
from cleanup.store import CleanupStore


# ── Parser Tests ──────────────────────────────────────────────────


class TestBuildParser:
    """Test CLI argument parser construction."""

    def test_returns_argument_parser(self):
        parser = build_parser()
        assert isinstance(parser, argparse.ArgumentParser)

    def test_subcommand_required(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args([])

    def test_ingest_requires_file(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["ingest", "--title", "Sample"])

    def test_workspace_defaults(self):
        parser = build_parser()
        args = parser.parse_args(["status"])
        assert args.db == "cleanup.db"
        assert args.profile is None
        assert args.document is None

    def test_ingest_options(self):
        parser = build_parser()
        args = parser.parse_args([
            "ingest", "--file", "book.txt", "--id", "doc-1", "--format", "markdown", "--db", "w.db",
        ])
        assert args.document_id == "doc-1"
        assert args.source_format == "markdown"
        assert args.db == "w.db"

    def test_clean_archaic_defaults_to_profile(self):
        parser = build_parser()
        assert parser.parse_args(["clean", "--document", "d"]).preserve_archaic is None
        assert parser.parse_args(["clean", "--document", "d", "--preserve-archaic"]).preserve_archaic is True
        assert parser.parse_args(["clean", "--document", "d", "--normalize-punctuation"]).preserve_archaic is False

    def test_clean_archaic_flags_exclusive(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["clean", "--document", "d", "--preserve-archaic", "--normalize-punctuation"])

    def test_resolve_status_choices(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["resolve", "--flag", "f", "--status", "unresolved", "--user", "u"])

    def test_approve_checks_repeatable(self):
        parser = build_parser()
        args = parser.parse_args([
            "approve", "--document", "d", "--user", "u",
            "--check", "boilerplate_removed", "--check", "punctuation_reviewed",
        ])
        assert args.check == ["boilerplate_removed", "punctuation_reviewed"]
        assert args.all_checks is False

    def test_diff_revision_numbers(self):
        parser = build_parser()
        args = parser.parse_args(["diff", "--document", "d", "--from", "1", "--to", "3"])
        assert (args.from_revision, args.to_revision) == (1, 3)

    def test_verbose_and_quiet_exclusive(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["--verbose", "--quiet", "status"])


# ── Main Tests ────────────────────────────────────────────────────


class TestMain:
    """Test the main entry point."""

    def test_help_returns_zero(self):
        assert main(["--help"]) == 0

    def test_missing_subcommand_returns_two(self):
        assert main([]) == 2

    def test_missing_source_file(self, tmp_path: Path, caplog):
        with caplog.at_level(logging.ERROR):
            code = main(["ingest", "--file", str(tmp_path / "nope.txt"), "--db", str(tmp_path / "w.db")])
        assert code == 1
        assert "Source file not found" in caplog.text

    def test_invalid_profile_returns_one(self, tmp_path: Path, invalid_profile_path: Path, caplog):
        with caplog.at_level(logging.ERROR):
            code = main([
                "status", "--db", str(tmp_path / "w.db"), "--profile", str(invalid_profile_path),
            ])
        assert code == 1
        assert "Profile error" in caplog.text

    def test_missing_profile_returns_one(self, tmp_path: Path, nonexistent_profile_path: Path):
        code = main([
            "status", "--db", str(tmp_path / "w.db"), "--profile", str(nonexistent_profile_path),
        ])
        assert code == 1

    def test_unknown_document_returns_one(self, tmp_path: Path, caplog):
        with caplog.at_level(logging.ERROR):
            code = main(["clean", "--document", "nope", "--db", str(tmp_path / "w.db")])
        assert code == 1
        assert "nope" in caplog.text

    def test_unknown_checklist_item(self, tmp_path: Path, caplog):
        with caplog.at_level(logging.ERROR):
            code = main([
                "approve", "--document", "d", "--user", "u", "--check", "vibes_checked",
                "--db", str(tmp_path / "w.db"),
            ])
        assert code == 1
        assert "vibes_checked" in caplog.text


# ── Workflow Tests ────────────────────────────────────────────────


class TestWorkflow:
    """Drive a document through the CLI end to end."""

    @pytest.fixture
    def workspace(self, tmp_path: Path, gutenberg_text: str) -> dict[str, str]:
        source = tmp_path / "sample_tales.txt"
        source.write_text(gutenberg_text, encoding="utf-8")
        return {"db": str(tmp_path / "work" / "cleanup.db"), "source": str(source)}

    def run(self, workspace: dict[str, str], *argv: str) -> int:
        return main([*argv, "--db", workspace["db"]])

    def test_ingest_and_clean(self, workspace, caplog):
        with caplog.at_level(logging.INFO):
            assert self.run(workspace, "ingest", "--file", workspace["source"], "--id", "tales") == 0
            assert self.run(workspace, "clean", "--document", "tales") == 0
        assert "Ingested sample_tales.txt as document tales" in caplog.text
        assert "Revision 1 created" in caplog.text
        assert "Chapters detected:    3" in caplog.text

    def test_title_defaults_to_file_stem(self, workspace):
        assert self.run(workspace, "ingest", "--file", workspace["source"]) == 0
        store = CleanupStore(workspace["db"])
        try:
            [document] = store.list_documents()
        finally:
            store.close()
        assert document.title == "sample_tales"

    def test_status_flags_and_lineage(self, workspace, caplog):
        self.run(workspace, "ingest", "--file", workspace["source"], "--id", "tales")
        self.run(workspace, "clean", "--document", "tales")
        caplog.clear()

        with caplog.at_level(logging.INFO):
            assert self.run(workspace, "status") == 0
            assert self.run(workspace, "flags", "--document", "tales") == 0
            assert self.run(workspace, "lineage", "--document", "tales") == 0
        assert "Latest revision: 1 (system)" in caplog.text
        assert "Unresolved flags: 1" in caplog.text
        assert "1 flag(s)" in caplog.text
        assert "unlabeled_boundary_candidate" in caplog.text
        assert "deterministic" in caplog.text

    def test_resolve_approve_edit_rollback(self, workspace, tmp_path: Path, caplog):
        self.run(workspace, "ingest", "--file", workspace["source"], "--id", "tales")
        self.run(workspace, "clean", "--document", "tales")
        store = CleanupStore(workspace["db"])
        try:
            [flag] = store.list_flags("tales")
        finally:
            store.close()

        edited = tmp_path / "edited.txt"
        edited.write_text("PREFACE\n\nA shorter book.", encoding="utf-8")

        with caplog.at_level(logging.INFO):
            assert self.run(workspace, "approve", "--document", "tales", "--user", "ann", "--all-checks") == 1
            assert self.run(
                workspace, "resolve", "--flag", flag.id, "--status", "confirmed",
                "--user", "ann", "--title", "Morning",
            ) == 0
            assert self.run(workspace, "approve", "--document", "tales", "--user", "ann", "--all-checks") == 0
            assert self.run(workspace, "edit", "--document", "tales", "--file", str(edited), "--user", "ann") == 0
            assert self.run(workspace, "diff", "--document", "tales", "--from", "1", "--to", "2") == 0
            assert self.run(workspace, "rollback", "--document", "tales", "--revision", "1", "--user", "ann") == 0

        assert "Approval blocked" in caplog.text
        assert "Created chapter 4: Morning" in caplog.text
        assert "Revision 1 approved by ann" in caplog.text
        assert "Previous approval no longer applies" in caplog.text
        assert "+++ revision 2" in caplog.text
        assert "Revision 3 restores revision 1" in caplog.text

    def test_plan_chunks(self, workspace, caplog):
        self.run(workspace, "ingest", "--file", workspace["source"], "--id", "tales")
        self.run(workspace, "clean", "--document", "tales")
        with caplog.at_level(logging.INFO):
            code = self.run(workspace, "plan-chunks", "--document", "tales", "--max-chunk-chars", "100", "--overlap", "10")
        assert code == 0
        assert "chunks (max=100, overlap=10)" in caplog.text

    def test_ai_pass_without_provider(self, workspace, caplog):
        self.run(workspace, "ingest", "--file", workspace["source"], "--id", "tales")
        self.run(workspace, "clean", "--document", "tales")
        with caplog.at_level(logging.INFO):
            assert self.run(workspace, "ai-pass", "--document", "tales") == 0
        assert "No provider configured" in caplog.text

    def test_edit_missing_file(self, workspace, tmp_path: Path, caplog):
        with caplog.at_level(logging.ERROR):
            code = self.run(
                workspace, "edit", "--document", "tales", "--file", str(tmp_path / "gone.txt"), "--user", "ann",
            )
        assert code == 1
        assert "Edited file not found" in caplog.text
