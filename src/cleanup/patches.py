"""Exact-match text patches: schema checks, confidence scoring and safe application."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from .decision_policy import normalize_confidence
from .errors import ValidationError

logger = logging.getLogger(__name__)


PATCH_CATEGORIES = (
    "ocr_error",
    "punctuation_normalization",
    "typo_correction",
    "hyphenation_fix",
    "formatting",
)
CONFIDENCE_LABELS = ("high", "low")
LABEL_SCORES = {"high": 0.9, "low": 0.55}
MAX_REASON_CHARS = 200


@dataclass(frozen=True)
class Patch:
    """A proposed edit: replace ``original`` at ``[start, end)`` with ``replacement``."""
    start: int
    end: int
    original: str
    replacement: str
    confidence: str
    reason: str
    category: str
    confidence_score: float | None = None


@dataclass(frozen=True)
class FailedPatch:
    patch: Patch
    error: str


@dataclass
class ApplyResult:
    """Outcome of applying a batch of patches to one text."""
    new_content: str
    applied_patches: list[Patch] = field(default_factory=list)
    failed_patches: list[FailedPatch] = field(default_factory=list)


@dataclass
class PatchStats:
    high_confidence_patches: int = 0
    low_confidence_patches: int = 0
    ocr_errors_fixed: int = 0
    punctuation_normalizations: int = 0


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def patch_from_dict(data: Any) -> Patch:
    """Build a Patch from provider JSON, checking every field.

    Raises:
        ValidationError: If a field is missing or has the wrong type or value.
    """
    if not isinstance(data, dict):
        raise ValidationError("Patch must be an object")

    for key in ("start", "end"):
        if not _is_int(data.get(key)) or data[key] < 0:
            raise ValidationError(f"Patch {key} must be a non-negative integer, got {data.get(key)!r}")
    for key in ("original", "replacement", "reason"):
        if not isinstance(data.get(key), str):
            raise ValidationError(f"Patch {key} must be a string")
    if data.get("confidence") not in CONFIDENCE_LABELS:
        raise ValidationError(f"Patch confidence must be one of {CONFIDENCE_LABELS}, got {data.get('confidence')!r}")
    if data.get("category") not in PATCH_CATEGORIES:
        raise ValidationError(f"Patch category must be one of {PATCH_CATEGORIES}, got {data.get('category')!r}")

    score = data.get("confidenceScore", data.get("confidence_score"))
    if score is not None and (isinstance(score, bool) or not isinstance(score, (int, float))):
        raise ValidationError(f"Patch confidenceScore must be a number, got {score!r}")

    return Patch(
        start=data["start"],
        end=data["end"],
        original=data["original"],
        replacement=data["replacement"],
        confidence=data["confidence"],
        reason=data["reason"][:MAX_REASON_CHARS],
        category=data["category"],
        confidence_score=float(score) if score is not None else None,
    )


def effective_confidence(patch: Patch) -> float:
    """Single numeric confidence for a patch.

    A numeric ``confidence_score`` wins (normalized like any policy input);
    NaN or a missing score falls back to the label mapping.
    """
    score = patch.confidence_score
    if score is not None and not math.isnan(score):
        return normalize_confidence(score)
    return LABEL_SCORES.get(patch.confidence, LABEL_SCORES["low"])


def check_patch(text: str, patch: Patch) -> str | None:
    """Return why ``patch`` cannot apply to ``text``, or None if it can."""
    if patch.start < 0 or patch.end > len(text) or patch.start > patch.end:
        return f"Offsets out of bounds: {patch.start}-{patch.end} (text length: {len(text)})"
    found = text[patch.start:patch.end]
    if found != patch.original:
        return f"Original text mismatch: expected {patch.original!r}, found {found!r}"
    return None


def validate_patch(text: str, patch: Patch) -> None:
    """Raise ValidationError unless ``patch`` applies cleanly to ``text``."""
    error = check_patch(text, patch)
    if error is not None:
        raise ValidationError(error)


def validate_patch_batch(text: str, patches: Iterable[Patch]) -> tuple[list[Patch], list[FailedPatch]]:
    """Split patches into those valid against ``text`` and those that are not.

    Overlapping patches are also rejected: once a range is claimed, a later
    patch touching it fails, since only one of them could apply.
    """
    valid: list[Patch] = []
    invalid: list[FailedPatch] = []
    for patch in sorted(patches, key=lambda p: (p.start, p.end)):
        error = check_patch(text, patch)
        if error is None and valid and patch.start < valid[-1].end:
            error = f"Overlaps patch at {valid[-1].start}-{valid[-1].end}"
        if error is None:
            valid.append(patch)
        else:
            invalid.append(FailedPatch(patch=patch, error=error))
    return valid, invalid


def apply_patches_safely(text: str, patches: Iterable[Patch]) -> ApplyResult:
    """Apply patches from the end of the text backward.

    Patches are sorted by ``start`` descending so a splice never moves the
    offsets of a patch still waiting to be applied. Each patch is checked
    against the current text at the moment it is applied; a patch that is out
    of bounds or whose ``original`` no longer matches is recorded as failed
    and the rest of the batch continues.

    Args:
        text: The source text.
        patches: Proposed patches with offsets into ``text``.

    Returns:
        ApplyResult with the new content and both the applied and failed lists.
    """
    current = text
    result = ApplyResult(new_content=text)

    for patch in sorted(patches, key=lambda p: p.start, reverse=True):
        error = check_patch(current, patch)
        if error is not None:
            logger.debug("Patch %d-%d rejected: %s", patch.start, patch.end, error)
            result.failed_patches.append(FailedPatch(patch=patch, error=error))
            continue
        current = current[:patch.start] + patch.replacement + current[patch.end:]
        result.applied_patches.append(patch)

    result.new_content = current
    if result.failed_patches:
        logger.warning(
            "Applied %d patches, %d failed", len(result.applied_patches), len(result.failed_patches)
        )
    return result


def offset_patches(patches: Iterable[Patch], base: int) -> list[Patch]:
    """Shift chunk-relative patch offsets by ``base`` to document offsets."""
    return [replace(p, start=p.start + base, end=p.end + base) for p in patches]


def dedupe_patches(patches: Iterable[Patch]) -> list[Patch]:
    """Drop exact duplicates produced by overlapping chunks, keeping first occurrences."""
    seen: set[tuple[int, int, str, str]] = set()
    unique: list[Patch] = []
    for patch in patches:
        key = (patch.start, patch.end, patch.original, patch.replacement)
        if key in seen:
            continue
        seen.add(key)
        unique.append(patch)
    return unique


def calculate_patch_stats(patches: Iterable[Patch]) -> PatchStats:
    stats = PatchStats()
    for patch in patches:
        if patch.confidence == "high":
            stats.high_confidence_patches += 1
        else:
            stats.low_confidence_patches += 1
        if patch.category == "ocr_error":
            stats.ocr_errors_fixed += 1
        elif patch.category == "punctuation_normalization":
            stats.punctuation_normalizations += 1
    return stats
