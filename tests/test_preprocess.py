"""Tests for the deterministic cleanup pass."""

from __future__ import annotations

from cleanup.decision_policy import AmbiguityKind
from cleanup.preprocess import (
    build_flag_drafts,
    normalize_punctuation,
    run_deterministic_cleanup,
    strip_boilerplate,
    unwrap_paragraphs,
)


# ── Boilerplate Tests ─────────────────────────────────────────────


class TestStripBoilerplate:
    """Test removal of the Project Gutenberg header and footer."""

    def test_strips_header_and_footer(self, gutenberg_text):
        result = strip_boilerplate(gutenberg_text)
        assert result.start_marker_found is True
        assert result.end_marker_found is True
        assert result.content.startswith("PREFACE")
        assert result.content.endswith("dawn.")
        assert "Project Gutenberg" not in result.content

    def test_no_markers_leaves_text(self):
        result = strip_boilerplate("  Plain prose.\n")
        assert result.content == "Plain prose."
        assert result.start_marker_found is False
        assert result.end_marker_found is False

    def test_start_marker_without_asterisks(self):
        text = "Licence\nSTART OF THE PROJECT GUTENBERG EBOOK DRACULA\nThe story."
        result = strip_boilerplate(text)
        assert result.start_marker_found is True
        assert result.content == "The story."

    def test_markers_are_case_insensitive(self):
        text = "*** start of this project gutenberg ebook x ***\nBody.\n*** end of this project gutenberg ebook x ***"
        result = strip_boilerplate(text)
        assert result.content == "Body."

    def test_end_of_project_gutenbergs_variant(self):
        text = "*** START OF THE PROJECT GUTENBERG EBOOK X ***\nBody.\nEnd of Project Gutenberg's X, by Y"
        result = strip_boilerplate(text)
        assert result.end_marker_found is True
        assert result.content == "Body."


# ── Paragraph Unwrap Tests ────────────────────────────────────────


class TestUnwrapParagraphs:
    """Test joining hard-wrapped lines."""

    def test_merges_lowercase_continuation(self):
        result = unwrap_paragraphs("It was a dark\nand stormy night.")
        assert result.content == "It was a dark and stormy night."
        assert result.unwrapped_count == 1

    def test_sentence_end_breaks(self):
        result = unwrap_paragraphs("First sentence.\nsecond line")
        assert result.content == "First sentence.\nsecond line"
        assert result.unwrapped_count == 0

    def test_uppercase_line_breaks(self):
        result = unwrap_paragraphs("a line without an end\nThe next line")
        assert result.content == "a line without an end\nThe next line"
        assert result.ambiguous_positions == []

    def test_blank_lines_preserved(self):
        result = unwrap_paragraphs("One.\n\nTwo.")
        assert result.content == "One.\n\nTwo."

    def test_heading_never_merged(self):
        result = unwrap_paragraphs("CHAPTER I\nthe beginning of it")
        assert result.content == "CHAPTER I\nthe beginning of it"

    def test_likely_header_paragraph_not_extended(self):
        result = unwrap_paragraphs("SCENE two\nbegins here")
        assert result.content == "SCENE two\nbegins here"

    def test_ambiguous_join_recorded(self):
        text = 'Intro.\n\nthe rain fell in\n"quoted" text.'
        result = unwrap_paragraphs(text)
        assert result.content == 'Intro.\n\nthe rain fell in "quoted" text.'
        assert len(result.ambiguous_positions) == 1
        pos = result.ambiguous_positions[0]
        assert result.content[pos.offset:].startswith("the rain fell in")
        assert pos.line_number == 4
        assert pos.context == 'the rain fell in || "quoted" text.'

    def test_ambiguous_context_uses_last_30_chars(self):
        paragraph = "x" * 50
        result = unwrap_paragraphs(f"{paragraph}\n1848 was the year.")
        pos = result.ambiguous_positions[0]
        assert pos.offset == 20
        assert pos.context.startswith("x" * 30 + " || 1848")


# ── Punctuation Tests ─────────────────────────────────────────────


class TestNormalizePunctuation:
    """Test the high-confidence substitutions and archaic detection."""

    def test_curls_quotes(self):
        result = normalize_punctuation('"Hello," she said.')
        assert result.content == "“Hello,” she said."
        assert result.changes == 2

    def test_double_dash(self):
        assert normalize_punctuation("Wait--what").content == "Wait—what"

    def test_ellipsis(self):
        assert normalize_punctuation("And so...").content == "And so…"

    def test_collapses_spaces_after_sentence(self):
        result = normalize_punctuation("End.   Next")
        assert result.content == "End. Next"
        assert result.changes == 1

    def test_no_changes(self):
        result = normalize_punctuation("Nothing to do here")
        assert result.changes == 0
        assert result.low_confidence_positions == []

    def test_archaic_forms_untouched_but_reported(self):
        text = "line one\nthe ne'er-do-well o'er there"
        result = normalize_punctuation(text)
        assert result.content == text
        assert [p.offset for p in result.low_confidence_positions] == [13, text.index("o'er")]
        assert result.low_confidence_positions[0].line_number == 2
        assert result.low_confidence_positions[0].context == 'archaic punctuation: "ne\'er"'


# ── Full Pass Tests ───────────────────────────────────────────────


class TestRunDeterministicCleanup:
    """Test the whole deterministic pass."""

    def test_produces_cleaned_text(self, gutenberg_text, cleaned_text):
        result = run_deterministic_cleanup(gutenberg_text)
        assert result.content == cleaned_text
        assert result.boilerplate_stripped is True
        assert result.unwrapped_count == 3
        assert result.punctuation_changes == 0
        assert result.chapters_detected == 3
        assert result.has_chapters is True
        assert len(result.unlabeled_breaks) == 1

    def test_stages_reported_in_order(self, gutenberg_text):
        stages: list[str] = []
        run_deterministic_cleanup(gutenberg_text, on_stage=stages.append)
        assert stages == ["boilerplate_removal", "paragraph_unwrap", "chapter_detection"]

    def test_punctuation_stage_when_not_preserving(self, gutenberg_text):
        stages: list[str] = []
        result = run_deterministic_cleanup(gutenberg_text, preserve_archaic=False, on_stage=stages.append)
        assert stages == [
            "boilerplate_removal",
            "paragraph_unwrap",
            "punctuation_normalization",
            "chapter_detection",
        ]
        assert len(result.low_confidence_punctuation) == 1

    def test_preserve_archaic_skips_punctuation(self):
        result = run_deterministic_cleanup("He paused--then spoke.", preserve_archaic=True)
        assert "--" in result.content
        assert result.punctuation_changes == 0

    def test_normalize_when_not_preserving(self):
        result = run_deterministic_cleanup("He paused--then spoke.", preserve_archaic=False)
        assert result.content == "He paused—then spoke."
        assert result.punctuation_changes == 1

    def test_ambiguous_offset_follows_normalization(self):
        text = 'Wait... and--then more.\n\nthe rain fell in\n"quoted" text.'
        result = run_deterministic_cleanup(text, preserve_archaic=False)
        assert "Wait… and—then more." in result.content
        [pos] = result.ambiguous_positions
        assert result.content[pos.offset:].startswith("the rain fell in")

    def test_unwrap_disabled(self):
        result = run_deterministic_cleanup("It was a dark\nand stormy night.", unwrap=False)
        assert result.content == "It was a dark\nand stormy night."
        assert result.unwrapped_count == 0

    def test_missing_markers_logged(self, caplog):
        with caplog.at_level("WARNING", logger="cleanup.preprocess"):
            result = run_deterministic_cleanup("Just prose.")
        assert result.boilerplate_stripped is False
        assert "start-of-book marker" in caplog.text


# ── Flag Draft Tests ──────────────────────────────────────────────


class TestBuildFlagDrafts:
    """Test conversion of pass results into review flag drafts."""

    def test_section_break_draft(self, gutenberg_text, cleaned_text):
        drafts = build_flag_drafts(run_deterministic_cleanup(gutenberg_text))
        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.type is AmbiguityKind.UNLABELED_BOUNDARY_CANDIDATE
        assert draft.start_offset == cleaned_text.index("* * *")
        assert draft.end_offset == draft.start_offset + len("* * *")
        assert "line 11" in draft.context_text

    def test_missing_markers_produce_ocr_drafts(self):
        drafts = build_flag_drafts(run_deterministic_cleanup("Just prose."))
        contexts = [d.context_text for d in drafts if d.type is AmbiguityKind.OCR_CORRUPTION_DETECTED]
        assert contexts == ["Start of book marker not detected", "End of book marker not detected"]

    def test_offsets_clipped_to_content(self):
        drafts = build_flag_drafts(run_deterministic_cleanup("Just prose."))
        for draft in drafts:
            assert 0 <= draft.start_offset <= draft.end_offset <= len("Just prose.")

    def test_ocr_heading_draft_carries_chapter_number(self):
        result = run_deterministic_cleanup("CHPTER I\n\nOnce upon a time.")
        ocr_drafts = [d for d in build_flag_drafts(result) if d.chapter_number is not None]
        assert len(ocr_drafts) == 1
        assert ocr_drafts[0].chapter_number == 1
        assert ocr_drafts[0].end_offset == len("CHPTER I")

    def test_ambiguous_unwrap_draft(self):
        result = run_deterministic_cleanup("the rain fell in\n1848 torrents.")
        kinds = [d.type for d in build_flag_drafts(result)]
        assert AmbiguityKind.LOW_CONFIDENCE_CLEANUP in kinds

    def test_archaic_punctuation_draft(self, gutenberg_text):
        result = run_deterministic_cleanup(gutenberg_text, preserve_archaic=False)
        kinds = [d.type for d in build_flag_drafts(result)]
        assert kinds.count(AmbiguityKind.AMBIGUOUS_PUNCTUATION) == 1
