"""Tests for the overlapping chunk planner."""

from __future__ import annotations

import math

import pytest

from cleanup.chunk_planner import TextChunk, find_chapter_for_position, plan_chunks
from cleanup.chaptering import DetectedChapter
from cleanup.errors import ValidationError


# ── Argument Validation Tests ─────────────────────────────────────


class TestPlanChunksValidation:
    """Test rejection of bad chunk bounds."""

    def test_zero_max_rejected(self):
        with pytest.raises(ValidationError, match="max_chunk_chars"):
            plan_chunks("some text", 0, 0)

    def test_negative_max_rejected(self):
        with pytest.raises(ValidationError, match="max_chunk_chars"):
            plan_chunks("some text", -5, 0)

    def test_max_message_names_camel_case_key(self):
        with pytest.raises(ValidationError, match="maxChunkChars"):
            plan_chunks("some text", 0, 0)
        with pytest.raises(ValidationError, match="maxChunkChars"):
            plan_chunks("some text", math.nan, 0)

    def test_overlap_equal_to_max_rejected(self):
        with pytest.raises(ValidationError, match="overlap"):
            plan_chunks("some text", 10, 10)

    def test_negative_overlap_rejected(self):
        with pytest.raises(ValidationError, match="overlap"):
            plan_chunks("some text", 10, -1)

    @pytest.mark.parametrize("value", [1.5, math.nan, math.inf, True, "10", None])
    def test_non_integer_max_rejected(self, value):
        with pytest.raises(ValidationError, match="max_chunk_chars"):
            plan_chunks("some text", value, 0)

    @pytest.mark.parametrize("value", [0.5, math.nan, -math.inf, False])
    def test_non_integer_overlap_rejected(self, value):
        with pytest.raises(ValidationError, match="overlap"):
            plan_chunks("some text", 10, value)

    def test_integral_float_accepted(self):
        chunks = plan_chunks("abcdef", 4.0, 1.0)
        assert [c.text for c in chunks] == ["abcd", "def"]

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            plan_chunks("text", 0, 0)


# ── Planning Tests ────────────────────────────────────────────────


class TestPlanChunks:
    """Test window placement over the text."""

    def test_empty_text_yields_no_chunks(self):
        assert plan_chunks("", 10, 2) == []

    def test_short_text_is_single_chunk(self):
        assert plan_chunks("hello", 10, 2) == [TextChunk(start=0, end=5, text="hello")]

    def test_text_exactly_max_is_single_chunk(self):
        chunks = plan_chunks("a" * 10, 10, 3)
        assert len(chunks) == 1
        assert chunks[0].end == 10

    def test_windows_with_overlap(self):
        chunks = plan_chunks("abcdefghij", 4, 1)
        assert [(c.start, c.end) for c in chunks] == [(0, 4), (3, 7), (6, 10)]
        assert [c.text for c in chunks] == ["abcd", "defg", "ghij"]

    def test_windows_without_overlap(self):
        chunks = plan_chunks("abcdefghij", 5, 0)
        assert [c.text for c in chunks] == ["abcde", "fghij"]

    def test_chain_properties_hold(self):
        text = "The quick brown fox jumps over the lazy dog. " * 40
        max_chars, overlap = 97, 13
        chunks = plan_chunks(text, max_chars, overlap)

        assert chunks[0].start == 0
        assert chunks[-1].end == len(text)
        for chunk in chunks:
            assert chunk.text == text[chunk.start:chunk.end]
            assert chunk.end - chunk.start <= max_chars
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start == prev.end - overlap

    def test_covers_every_character(self):
        text = "x" * 1001
        chunks = plan_chunks(text, 100, 25)
        covered = set()
        for chunk in chunks:
            covered.update(range(chunk.start, chunk.end))
        assert covered == set(range(len(text)))


# ── Chapter Lookup Tests ──────────────────────────────────────────


class TestFindChapterForPosition:
    """Test locating the chapter that contains an offset."""

    @pytest.fixture
    def chapters(self) -> list[DetectedChapter]:
        return [
            DetectedChapter(1, "Preface", "preface", 0, 50, "PREFACE", "high"),
            DetectedChapter(2, "The Arrival", "chapter", 50, 120, "CHAPTER I", "high"),
        ]

    def test_position_in_first_chapter(self, chapters):
        assert find_chapter_for_position(chapters, 10).chapter_number == 1

    def test_start_offset_is_inclusive(self, chapters):
        assert find_chapter_for_position(chapters, 50).chapter_number == 2

    def test_end_offset_is_exclusive(self, chapters):
        assert find_chapter_for_position(chapters, 120) is None

    def test_no_chapters(self):
        assert find_chapter_for_position([], 0) is None
