"""Confidence-threshold policy deciding between auto-apply and manual review."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Mapping


class AmbiguityKind(str, Enum):
    """Kinds of ambiguity the engine can raise, shared by flags and auto-resolutions."""

    AMBIGUOUS_PUNCTUATION = "ambiguous_punctuation"
    LOW_CONFIDENCE_CLEANUP = "low_confidence_cleanup"
    UNLABELED_BOUNDARY_CANDIDATE = "unlabeled_boundary_candidate"
    OCR_CORRUPTION_DETECTED = "ocr_corruption_detected"
    CHAPTER_BOUNDARY_DISPUTED = "chapter_boundary_disputed"


AUTO_APPLY = "auto_apply"
MANUAL_REVIEW = "manual_review"

DEFAULT_THRESHOLDS: dict[AmbiguityKind, float] = {
    AmbiguityKind.AMBIGUOUS_PUNCTUATION: 0.8,
    AmbiguityKind.LOW_CONFIDENCE_CLEANUP: 0.92,
    AmbiguityKind.UNLABELED_BOUNDARY_CANDIDATE: 0.97,
    AmbiguityKind.OCR_CORRUPTION_DETECTED: 0.95,
    AmbiguityKind.CHAPTER_BOUNDARY_DISPUTED: 0.98,
}


@dataclass(frozen=True)
class Decision:
    """Outcome of a policy decision."""
    action: str
    threshold_used: float
    clamped_confidence: float

    @property
    def auto_apply(self) -> bool:
        return self.action == AUTO_APPLY


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def normalize_confidence(value: float) -> float:
    """Map any float into [0, 1]: NaN becomes 0, infinities saturate."""
    if math.isnan(value):
        return 0.0
    if math.isinf(value):
        return 1.0 if value > 0 else 0.0
    return _clamp(value)


def normalize_threshold(value: float, fallback: float) -> float:
    """Map a threshold into [0, 1]; NaN falls back to ``fallback``."""
    if math.isnan(value):
        return _clamp(fallback)
    if math.isinf(value):
        return 1.0 if value > 0 else 0.0
    return _clamp(value)


def resolve_threshold(
    kind: AmbiguityKind | str,
    thresholds: Mapping[AmbiguityKind | str, float] | None = None,
) -> float:
    """Return the normalized threshold for ``kind`` with overrides applied.

    Raises:
        ValueError: If ``kind`` is not a known ambiguity kind.
    """
    kind = AmbiguityKind(kind)
    default = DEFAULT_THRESHOLDS[kind]
    if not thresholds:
        return default

    # Overrides may be keyed by enum member or by its string value
    override = thresholds.get(kind)
    if override is None:
        override = thresholds.get(kind.value)
    if override is None:
        return default
    return normalize_threshold(float(override), default)


def decide(
    kind: AmbiguityKind | str,
    confidence: float,
    thresholds: Mapping[AmbiguityKind | str, float] | None = None,
) -> Decision:
    """Decide whether an ambiguity of ``kind`` at ``confidence`` can be auto-applied.

    Args:
        kind: The ambiguity kind.
        confidence: Raw confidence score; any float, including NaN and infinities.
        thresholds: Optional per-kind overrides of the default thresholds.

    Returns:
        A Decision; ``auto_apply`` iff the clamped confidence reaches the threshold.
    """
    threshold = resolve_threshold(kind, thresholds)
    clamped = normalize_confidence(float(confidence))
    action = AUTO_APPLY if clamped >= threshold else MANUAL_REVIEW
    return Decision(action=action, threshold_used=threshold, clamped_confidence=clamped)


def kind_for_patch_category(category: str) -> AmbiguityKind:
    """Ambiguity kind a patch of ``category`` is judged under."""
    if category == "punctuation_normalization":
        return AmbiguityKind.AMBIGUOUS_PUNCTUATION
    return AmbiguityKind.LOW_CONFIDENCE_CLEANUP
