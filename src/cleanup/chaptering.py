"""Line-based chapter boundary detection for plain-text books."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Sequence

logger = logging.getLogger(__name__)


CHAPTER_TYPES = ("chapter", "preface", "introduction", "notes", "appendix", "body")


@dataclass
class HeadingMatch:
    """Result of classifying a single line."""
    is_heading: bool
    type: str | None = None
    title: str | None = None
    confidence: str = "low"
    is_ocr_corrupted: bool = False


@dataclass
class SectionBreak:
    """A horizontal-rule style line."""
    pattern: str
    pattern_name: str


@dataclass
class UnlabeledBreak:
    """A section break found inside a chapter with no heading after it."""
    offset: int
    pattern: str
    pattern_name: str
    line_number: int


@dataclass
class DetectedChapter:
    """A chapter segment of one text. Offsets are half-open character offsets."""
    chapter_number: int
    title: str
    type: str
    start_offset: int
    end_offset: int
    detected_heading: str | None
    confidence: str
    is_ocr_corrupted: bool = False
    is_user_confirmed: bool = False
    content: str = ""


@dataclass
class ChapterDetection:
    """Everything the detector found in one text."""
    chapters: list[DetectedChapter]
    unlabeled_breaks: list[UnlabeledBreak] = field(default_factory=list)
    has_chapters: bool = False
    total_lines: int = 0


# Ordered most specific first; the first match wins.
_CHAPTER_WORD = r"(?:CHAPTER|CHAP\.?)"
_TITLE_TAIL = r"[.:)]?\s*[\-—]?\s*(.+)?$"
CHAPTER_HEADING_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(rf"^{_CHAPTER_WORD}\s+[IVX]+\b{_TITLE_TAIL}", re.IGNORECASE), "chapter"),
    (re.compile(rf"^{_CHAPTER_WORD}\s+\d+\b{_TITLE_TAIL}", re.IGNORECASE), "chapter"),
    (re.compile(rf"^{_CHAPTER_WORD}\s+[A-Z]\b{_TITLE_TAIL}", re.IGNORECASE), "chapter"),
    (re.compile(r"^(?:PREFACE|PREFECE)\b[.:)]?\s*(.+)?$", re.IGNORECASE), "preface"),
    (re.compile(r"^(?:INTRODUCTION|INTRODUTION)\b[.:)]?\s*(.+)?$", re.IGNORECASE), "introduction"),
    (re.compile(rf"^(?:BOOK|PART)\s+[IVX\d]+\b{_TITLE_TAIL}", re.IGNORECASE), "chapter"),
    (re.compile(r"^(?:APPENDIX|APPENDICES)\b[\s\d]*[.:)]?\s*(.+)?$", re.IGNORECASE), "appendix"),
    # A bare keyword only, so prose such as "Note that..." is not a heading
    (re.compile(r"^(?:NOTES|NOTE|FOOTNOTES|END NOTES)[.:]?$", re.IGNORECASE), "notes"),
    (re.compile(r"^(?:PROLOGUE|EPILOGUE)\b[.:)]?\s*(.+)?$", re.IGNORECASE), "chapter"),
]

# Garbled upper-case "CHAPTER" tokens left behind by OCR: CHPTER, CHAPTR, CHAPIER...
OCR_HEADING_PATTERNS: list[re.Pattern] = [
    re.compile(r"^CH\w?PT\w?R\s+([IVX\d]+)\b"),
    re.compile(r"^CH\w+ER\s+([IVX\d]+)\b"),
    re.compile(r"^CHAP\w?ER\s+([IVX\d]+)\b"),
]

SECTION_BREAK_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^\s*[-*_]{3,}\s*$"), "asterisk/dash rule"),
    (re.compile(r"^\s*#{3,}\s*$"), "hash rule"),
    (re.compile(r"^\s*\*\s*\*\s*\*\s*$"), "spaced asterisks"),
]

_NUMBER_TOKEN = re.compile(r"\b(?:[IVX]+|\d+|[A-Z])\b", re.IGNORECASE)
_ROMAN_NUMERAL = re.compile(r"[IVX]+", re.IGNORECASE)
_WORD = re.compile(r"\b\w+")


def _title_word(match: re.Match) -> str:
    word = match.group(0)
    if _ROMAN_NUMERAL.fullmatch(word):
        return word.upper()
    return word[0].upper() + word[1:].lower()


def normalize_chapter_title(title: str) -> str:
    """Tidy a heading into a display title: ``chap. iv`` -> ``Chapter IV``."""
    title = re.sub(r"\s+", " ", title).strip()
    title = re.sub(r"^Chap(?:\.\s*|\s+)", "Chapter ", title, flags=re.IGNORECASE)
    title = re.sub(r"^Ch(?:\.\s*|\s+)", "Chapter ", title, flags=re.IGNORECASE)
    return _WORD.sub(_title_word, title)


def detect_chapter_heading(line: str) -> HeadingMatch:
    """Classify one line as a chapter-like heading or not.

    Args:
        line: A single line of text; surrounding whitespace is ignored.

    Returns:
        A HeadingMatch. ``is_heading`` is False for ordinary prose and for
        section-break rules.
    """
    stripped = line.strip()
    if not stripped:
        return HeadingMatch(is_heading=False)

    for pattern, chapter_type in CHAPTER_HEADING_PATTERNS:
        match = pattern.match(stripped)
        if not match:
            continue
        captured = match.group(1) if match.groups() else None
        if captured and captured.strip():
            title = captured.strip()
        else:
            # "BOOK II" -> "Book II"; a bare keyword keeps its own spelling
            keyword, _, rest = stripped.partition(" ")
            number = _NUMBER_TOKEN.search(rest)
            title = f"{keyword} {number.group(0)}" if number else keyword.rstrip(".:)")
        return HeadingMatch(
            is_heading=True,
            type=chapter_type,
            title=normalize_chapter_title(title),
            confidence="high",
        )

    for pattern in OCR_HEADING_PATTERNS:
        match = pattern.match(stripped)
        if match:
            return HeadingMatch(
                is_heading=True,
                type="chapter",
                title=f"Chapter {match.group(1).upper()}",
                confidence="medium",
                is_ocr_corrupted=True,
            )

    return HeadingMatch(is_heading=False)


def detect_section_break(line: str) -> SectionBreak | None:
    """Return the section-break pattern a line matches, or None."""
    stripped = line.strip()
    for pattern, name in SECTION_BREAK_PATTERNS:
        if pattern.match(line):
            return SectionBreak(pattern=stripped[:20], pattern_name=name)
    return None


def detect_chapter_boundaries(text: str) -> ChapterDetection:
    """Split text into chapter segments and collect unlabeled section breaks.

    Each heading line starts a new chapter that runs until the next heading
    (or the end of the text). Text before the first heading is not part of
    any chapter. When no heading is found, the whole text becomes a single
    ``body`` chapter.

    Args:
        text: Full text of one revision.

    Returns:
        A ChapterDetection with ordered chapters, unlabeled breaks, a
        ``has_chapters`` flag and the line count.
    """
    lines = text.split("\n")
    chapters: list[DetectedChapter] = []
    unlabeled: list[UnlabeledBreak] = []
    current: DetectedChapter | None = None
    current_lines: list[str] = []
    offset = 0

    def close(end: int) -> None:
        current.end_offset = end
        current.content = "\n".join(current_lines)

    for line_number, line in enumerate(lines, start=1):
        heading = detect_chapter_heading(line)
        if heading.is_heading:
            if current is not None:
                close(offset)
            current = DetectedChapter(
                chapter_number=len(chapters) + 1,
                title=heading.title or "",
                type=heading.type or "chapter",
                start_offset=offset,
                end_offset=offset,
                detected_heading=line.strip(),
                confidence=heading.confidence,
                is_ocr_corrupted=heading.is_ocr_corrupted,
            )
            chapters.append(current)
            current_lines = [line]
        else:
            if current is not None:
                section_break = detect_section_break(line)
                if section_break is not None:
                    unlabeled.append(
                        UnlabeledBreak(
                            offset=offset,
                            pattern=section_break.pattern,
                            pattern_name=section_break.pattern_name,
                            line_number=line_number,
                        )
                    )
                current_lines.append(line)
        offset += len(line) + 1

    if current is not None:
        close(len(text))

    if not chapters:
        chapters.append(
            DetectedChapter(
                chapter_number=1,
                title="Body",
                type="body",
                start_offset=0,
                end_offset=len(text),
                detected_heading=None,
                confidence="low",
                content=text,
            )
        )

    has_chapters = any(c.type == "chapter" for c in chapters)
    logger.debug(
        "Detected %d chapter segments and %d unlabeled breaks over %d lines",
        len(chapters), len(unlabeled), len(lines),
    )
    return ChapterDetection(
        chapters=chapters,
        unlabeled_breaks=unlabeled,
        has_chapters=has_chapters,
        total_lines=len(lines),
    )


def reslice_chapters(
    chapters: Sequence[DetectedChapter], old_length: int, new_text: str
) -> list[DetectedChapter] | None:
    """Copy chapter ranges onto new content of identical length.

    Returns None when the length differs, since the old offsets no longer
    line up and boundaries must be re-detected instead.
    """
    if len(new_text) != old_length:
        return None
    return [
        DetectedChapter(
            chapter_number=c.chapter_number,
            title=c.title,
            type=c.type,
            start_offset=c.start_offset,
            end_offset=c.end_offset,
            detected_heading=c.detected_heading,
            confidence=c.confidence,
            is_ocr_corrupted=c.is_ocr_corrupted,
            is_user_confirmed=c.is_user_confirmed,
            content=new_text[c.start_offset:c.end_offset],
        )
        for c in chapters
    ]
