"""Deterministic cleanup pass: boilerplate stripping, paragraph unwrapping, punctuation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from .chaptering import (
    ChapterDetection,
    DetectedChapter,
    UnlabeledBreak,
    detect_chapter_boundaries,
    detect_chapter_heading,
)
from .decision_policy import AmbiguityKind

logger = logging.getLogger(__name__)


@dataclass
class BoilerplateResult:
    """Text left after removing the licence header and footer."""
    content: str
    start_marker_found: bool
    end_marker_found: bool


@dataclass
class AmbiguousPosition:
    """A point in the text a reviewer should look at."""
    offset: int
    context: str
    line_number: int


@dataclass
class UnwrapResult:
    """Result of joining hard-wrapped lines into paragraphs."""
    content: str
    unwrapped_count: int
    ambiguous_positions: list[AmbiguousPosition] = field(default_factory=list)


@dataclass
class PunctuationResult:
    """Result of the high-confidence punctuation substitutions."""
    content: str
    changes: int
    low_confidence_positions: list[AmbiguousPosition] = field(default_factory=list)


@dataclass
class CleanupResult:
    """Everything the deterministic pass produced for one text."""
    content: str
    boilerplate_stripped: bool
    start_marker_found: bool
    end_marker_found: bool
    unwrapped_count: int
    punctuation_changes: int
    chapters: list[DetectedChapter]
    unlabeled_breaks: list[UnlabeledBreak]
    ambiguous_positions: list[AmbiguousPosition]
    low_confidence_punctuation: list[AmbiguousPosition]
    has_chapters: bool

    @property
    def chapters_detected(self) -> int:
        return len(self.chapters)


@dataclass
class FlagDraft:
    """A review flag that has not yet been bound to a revision."""
    type: AmbiguityKind
    start_offset: int
    end_offset: int
    context_text: str
    suggested_action: str
    chapter_number: int | None = None


GUTENBERG_START_MARKERS: list[re.Pattern] = [
    re.compile(r"^\*\*\* START OF (THIS|THE) PROJECT GUTENBERG EBOOK[^*]*\*\*\*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\*\*\* START OF (THIS|THE) PROJECT GUTENBERG[^*]*\*\*\*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^START OF (THIS|THE) PROJECT GUTENBERG EBOOK.*$", re.IGNORECASE | re.MULTILINE),
]

GUTENBERG_END_MARKERS: list[re.Pattern] = [
    re.compile(r"^\*\*\* END OF (THIS|THE) PROJECT GUTENBERG EBOOK[^*]*\*\*\*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\*\*\* END OF (THIS|THE) PROJECT GUTENBERG[^*]*\*\*\*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^END OF (THIS|THE) PROJECT GUTENBERG EBOOK", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*End of Project Gutenberg['\"]?s?", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*End of the Project Gutenberg", re.IGNORECASE | re.MULTILINE),
]

SENTENCE_ENDERS = re.compile(r"[.!?][\"'”’]?\s*$")
STRONG_CONTINUATION = re.compile(r"^[a-z]")
STARTS_UPPERCASE = re.compile(r"^[A-Z]")
LIKELY_HEADER = re.compile(
    r"^(CHAPTER|BOOK|PART|SCENE|ACT|PREFACE|INTRODUCTION|APPENDIX|NOTES)\s", re.IGNORECASE
)

# Applied in order; each is safe to run on any prose.
PUNCTUATION_SUBSTITUTIONS: list[tuple[re.Pattern, str, str]] = [
    (re.compile(r"([.!?])  +"), r"\1 ", "multiple spaces after sentence"),
    (re.compile(r"([a-zA-Z.,;:!?])\""), "\\1\u201d", "closing quote"),
    (re.compile(r"^\"([a-zA-Z])", re.MULTILINE), "\u201c\\1", "opening quote at line start"),
    (re.compile(r"--"), "\u2014", "double dash to em dash"),
    (re.compile(r"\.\.\."), "\u2026", "ellipsis"),
]

ARCHAIC_APOSTROPHE = re.compile(r"\b([a-zA-Z]+)'([a-zA-Z]+)\b")


def strip_boilerplate(text: str) -> BoilerplateResult:
    """Remove Project Gutenberg licence text around the work.

    Everything up to and including the first matching start marker and
    everything from the first matching end marker onward is dropped. The
    marker lists are tried in order; the first pattern that matches wins.
    """
    content = text
    start_found = False
    end_found = False

    for pattern in GUTENBERG_START_MARKERS:
        match = pattern.search(content)
        if match:
            content = content[match.end():]
            start_found = True
            break

    for pattern in GUTENBERG_END_MARKERS:
        match = pattern.search(content)
        if match:
            content = content[:match.start()]
            end_found = True
            break

    return BoilerplateResult(
        content=content.strip(),
        start_marker_found=start_found,
        end_marker_found=end_found,
    )


def unwrap_paragraphs(text: str) -> UnwrapResult:
    """Join hard-wrapped lines back into paragraphs.

    A line is merged into the running paragraph when the paragraph does not
    end a sentence and the line starts lowercase. When the paragraph does not
    end a sentence and the line starts with neither case (a digit, a quote, a
    dash), the line is merged anyway and the join point is recorded as
    ambiguous. Blank lines and headings always break.

    Returns:
        UnwrapResult whose ambiguous offsets point into the unwrapped content.
    """
    lines = text.split("\n")
    result: list[str] = []
    emitted = 0
    paragraph = ""
    unwrapped = 0
    ambiguous: list[AmbiguousPosition] = []

    def flush() -> None:
        nonlocal paragraph, emitted
        if paragraph:
            result.append(paragraph)
            emitted += len(paragraph) + 1
            paragraph = ""

    def push(line: str) -> None:
        nonlocal emitted
        result.append(line)
        emitted += len(line) + 1

    for line_number, line in enumerate(lines, start=1):
        trimmed = line.strip()

        if not trimmed:
            flush()
            push("")
            continue

        heading = detect_chapter_heading(trimmed)
        if heading.is_heading and heading.confidence == "high":
            flush()
            push(trimmed)
            continue

        if not paragraph:
            paragraph = trimmed
            continue

        ends_sentence = bool(SENTENCE_ENDERS.search(paragraph))
        looks_like_header = bool(LIKELY_HEADER.match(paragraph))

        if not ends_sentence and not looks_like_header and STRONG_CONTINUATION.match(trimmed):
            paragraph = f"{paragraph} {trimmed}"
            unwrapped += 1
        elif not ends_sentence and not looks_like_header and not STARTS_UPPERCASE.match(trimmed):
            context_start = max(0, len(paragraph) - 30)
            ambiguous.append(
                AmbiguousPosition(
                    offset=emitted + context_start,
                    context=f"{paragraph[context_start:]} || {trimmed[:30]}",
                    line_number=line_number,
                )
            )
            paragraph = f"{paragraph} {trimmed}"
            unwrapped += 1
        else:
            flush()
            paragraph = trimmed

    if paragraph:
        result.append(paragraph)

    return UnwrapResult(
        content="\n".join(result),
        unwrapped_count=unwrapped,
        ambiguous_positions=ambiguous,
    )


def _substitute_punctuation(text: str, quiet: bool = False) -> tuple[str, int]:
    content = text
    changes = 0
    for pattern, replacement, description in PUNCTUATION_SUBSTITUTIONS:
        content, count = pattern.subn(replacement, content)
        if count and not quiet:
            logger.debug("Punctuation: %s x%d", description, count)
        changes += count
    return content, changes


def normalize_punctuation(text: str) -> PunctuationResult:
    """Apply the fixed high-confidence punctuation substitutions.

    Apostrophes inside words (``o'er``, ``'tis``-style contractions) are
    never changed; each occurrence is reported as a low-confidence position
    so a reviewer can confirm the archaic form.
    """
    content, changes = _substitute_punctuation(text)

    low_confidence: list[AmbiguousPosition] = []
    offset = 0
    for line_number, line in enumerate(content.split("\n"), start=1):
        for match in ARCHAIC_APOSTROPHE.finditer(line):
            low_confidence.append(
                AmbiguousPosition(
                    offset=offset + match.start(),
                    context=f'archaic punctuation: "{match.group(0)}"',
                    line_number=line_number,
                )
            )
        offset += len(line) + 1

    return PunctuationResult(
        content=content,
        changes=changes,
        low_confidence_positions=low_confidence,
    )


def run_deterministic_cleanup(
    text: str,
    preserve_archaic: bool = True,
    unwrap: bool = True,
    normalize: bool = True,
    on_stage: Callable[[str], None] | None = None,
) -> CleanupResult:
    """Run the full deterministic pass on raw source text.

    Applies in order:
    1. Boilerplate stripping
    2. Paragraph unwrapping (optional)
    3. Punctuation normalization (optional; skipped when preserving archaic forms)
    4. Chapter boundary detection

    ``on_stage`` is called with each stage name as it starts.
    """
    report = on_stage or (lambda stage: None)

    # 1. Strip boilerplate
    report("boilerplate_removal")
    boilerplate = strip_boilerplate(text)
    content = boilerplate.content
    if not boilerplate.start_marker_found:
        logger.warning("No start-of-book marker found; boilerplate may remain")
    if not boilerplate.end_marker_found:
        logger.warning("No end-of-book marker found; boilerplate may remain")

    # 2. Unwrap paragraphs
    unwrapped_count = 0
    ambiguous: list[AmbiguousPosition] = []
    if unwrap:
        report("paragraph_unwrap")
        unwrapped = unwrap_paragraphs(content)
        content = unwrapped.content
        unwrapped_count = unwrapped.unwrapped_count
        ambiguous = unwrapped.ambiguous_positions

    # 3. Normalize punctuation
    punctuation_changes = 0
    low_confidence: list[AmbiguousPosition] = []
    if normalize and not preserve_archaic:
        report("punctuation_normalization")
        unwrapped_text = content
        punctuation = normalize_punctuation(content)
        content = punctuation.content
        punctuation_changes = punctuation.changes
        low_confidence = punctuation.low_confidence_positions
        if punctuation_changes:
            ambiguous = [_relocate_position(p, unwrapped_text, len(content)) for p in ambiguous]

    # 4. Detect chapters
    report("chapter_detection")
    detection: ChapterDetection = detect_chapter_boundaries(content)

    logger.info(
        "Deterministic pass: %d chars -> %d chars, %d lines unwrapped, "
        "%d punctuation changes, %d chapters",
        len(text), len(content), unwrapped_count, punctuation_changes,
        len(detection.chapters),
    )

    return CleanupResult(
        content=content,
        boilerplate_stripped=boilerplate.start_marker_found and boilerplate.end_marker_found,
        start_marker_found=boilerplate.start_marker_found,
        end_marker_found=boilerplate.end_marker_found,
        unwrapped_count=unwrapped_count,
        punctuation_changes=punctuation_changes,
        chapters=detection.chapters,
        unlabeled_breaks=detection.unlabeled_breaks,
        ambiguous_positions=ambiguous,
        low_confidence_punctuation=low_confidence,
        has_chapters=detection.has_chapters,
    )


def _relocate_position(position: AmbiguousPosition, unwrapped_text: str, length: int) -> AmbiguousPosition:
    """Map an offset in the unwrapped text to the same spot after punctuation normalization.

    Substitutions never span a paragraph start, so normalizing the text before
    the offset yields exactly the prefix the normalized text has there.
    """
    prefix, _ = _substitute_punctuation(unwrapped_text[:position.offset], quiet=True)
    return AmbiguousPosition(
        offset=min(len(prefix), max(0, length - 1)),
        context=position.context,
        line_number=position.line_number,
    )


def build_flag_drafts(result: CleanupResult) -> list[FlagDraft]:
    """Turn the ambiguity lists of a deterministic pass into review flag drafts."""
    drafts: list[FlagDraft] = []

    for brk in result.unlabeled_breaks:
        drafts.append(
            FlagDraft(
                type=AmbiguityKind.UNLABELED_BOUNDARY_CANDIDATE,
                start_offset=brk.offset,
                end_offset=brk.offset + len(brk.pattern),
                context_text=f'Section break at line {brk.line_number}: "{brk.pattern[:50]}"',
                suggested_action="Review and confirm if this is a chapter boundary",
            )
        )

    for pos in result.ambiguous_positions:
        drafts.append(
            FlagDraft(
                type=AmbiguityKind.LOW_CONFIDENCE_CLEANUP,
                start_offset=pos.offset,
                end_offset=pos.offset + 60,
                context_text=f'Ambiguous paragraph structure at line {pos.line_number}: "{pos.context[:100]}"',
                suggested_action="Verify paragraph boundaries are correct",
            )
        )

    for pos in result.low_confidence_punctuation:
        drafts.append(
            FlagDraft(
                type=AmbiguityKind.AMBIGUOUS_PUNCTUATION,
                start_offset=pos.offset,
                end_offset=pos.offset + 20,
                context_text=f"Punctuation at line {pos.line_number}: {pos.context[:100]}",
                suggested_action="Verify punctuation is correct (archaic forms preserved)",
            )
        )

    if not result.start_marker_found:
        drafts.append(
            FlagDraft(
                type=AmbiguityKind.OCR_CORRUPTION_DETECTED,
                start_offset=0,
                end_offset=100,
                context_text="Start of book marker not detected",
                suggested_action="Verify boilerplate removal didn't truncate content",
            )
        )
    if not result.end_marker_found:
        drafts.append(
            FlagDraft(
                type=AmbiguityKind.OCR_CORRUPTION_DETECTED,
                start_offset=0,
                end_offset=100,
                context_text="End of book marker not detected",
                suggested_action="Verify boilerplate removal didn't truncate content",
            )
        )

    for chapter in result.chapters:
        if chapter.is_ocr_corrupted:
            drafts.append(
                FlagDraft(
                    type=AmbiguityKind.OCR_CORRUPTION_DETECTED,
                    start_offset=chapter.start_offset,
                    end_offset=chapter.start_offset + len(chapter.detected_heading or ""),
                    context_text=f'OCR-corrupted heading: "{chapter.detected_heading}"',
                    suggested_action="Verify chapter heading is correctly interpreted",
                    chapter_number=chapter.chapter_number,
                )
            )

    # Offsets are clipped to the content so every flag points inside the revision
    limit = len(result.content)
    for draft in drafts:
        draft.start_offset = min(draft.start_offset, limit)
        draft.end_offset = max(draft.start_offset, min(draft.end_offset, limit))

    return drafts
