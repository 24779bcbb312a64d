"""Overlapping window planner for provider-sized text chunks."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

from .errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextChunk:
    """A window into the source text. ``text == source[start:end]``."""
    start: int
    end: int
    text: str


def _require_integer(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a finite integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    raise ValidationError(f"{name} must be a finite integer, got {value!r}")


def plan_chunks(text: str, max_chunk_chars: int, overlap_chars: int) -> list[TextChunk]:
    """Split text into windows of at most ``max_chunk_chars`` sharing ``overlap_chars``.

    Consecutive chunks satisfy ``next.start == prev.end - overlap_chars``; the
    first chunk starts at 0 and the last ends at ``len(text)``.

    Args:
        text: Text to split.
        max_chunk_chars: Maximum chunk length; a positive integer.
        overlap_chars: Characters shared by neighbouring chunks; ``0 <= overlap < max``.

    Returns:
        Ordered list of chunks. Empty text yields an empty list.

    Raises:
        ValidationError: If either bound is not a finite integer or is out of range.
    """
    max_chars = _require_integer(max_chunk_chars, "max_chunk_chars (maxChunkChars)")
    overlap = _require_integer(overlap_chars, "overlap_chars")

    if max_chars <= 0:
        raise ValidationError(f"max_chunk_chars (maxChunkChars) must be greater than 0, got {max_chars}")
    if overlap < 0 or overlap >= max_chars:
        raise ValidationError(
            f"overlap_chars must be >= 0 and less than max_chunk_chars "
            f"({max_chars}), got {overlap}"
        )

    if not text:
        return []
    if len(text) <= max_chars:
        return [TextChunk(start=0, end=len(text), text=text)]

    chunks: list[TextChunk] = []
    start = 0
    while True:
        end = min(start + max_chars, len(text))
        chunks.append(TextChunk(start=start, end=end, text=text[start:end]))
        if end == len(text):
            break
        start = end - overlap

    logger.debug(
        "Planned %d chunks over %d chars (max=%d, overlap=%d)",
        len(chunks), len(text), max_chars, overlap,
    )
    return chunks


def find_chapter_for_position(chapters: Sequence[Any], position: int) -> Any | None:
    """Return the chapter whose ``[start_offset, end_offset)`` contains ``position``."""
    for chapter in chapters:
        if chapter.start_offset <= position < chapter.end_offset:
            return chapter
    return None
