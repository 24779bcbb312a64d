"""Model-usage and chunking telemetry for AI passes."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError


@dataclass
class AiPassTelemetry:
    """Normalized telemetry for one AI pass. Timestamps are epoch milliseconds."""
    requested_model: str
    resolved_model: str
    fallback_used: bool
    chunk_count: int
    max_chunk_chars: int
    overlap_chars: int
    total_input_chars: int
    processing_started_at: float | None = None
    processing_completed_at: float | None = None

    @property
    def duration_ms(self) -> float | None:
        return processing_duration(self.processing_started_at, self.processing_completed_at)


def _non_negative_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, math.floor(number))


def _model_name(value: str | None) -> str:
    if value is None:
        return "unknown"
    return value.strip() or "unknown"


def normalize_telemetry(
    requested_model: str | None,
    resolved_model: str | None,
    fallback_used: bool | None = None,
    chunk_count: Any = None,
    max_chunk_chars: Any = None,
    overlap_chars: Any = None,
    total_input_chars: Any = None,
    processing_started_at: float | None = None,
    processing_completed_at: float | None = None,
) -> AiPassTelemetry:
    """Clean raw telemetry values before they are stored.

    Model names are trimmed (blank becomes ``"unknown"``) and counts are
    floored to non-negative integers, with non-finite values becoming 0.

    Raises:
        ValidationError: If neither model name is known.
    """
    requested = _model_name(requested_model)
    resolved = _model_name(resolved_model)
    if requested == "unknown" and resolved == "unknown":
        raise ValidationError("At least one model name must be provided")

    return AiPassTelemetry(
        requested_model=requested,
        resolved_model=resolved,
        fallback_used=bool(fallback_used) if fallback_used is not None else False,
        chunk_count=_non_negative_int(chunk_count),
        max_chunk_chars=_non_negative_int(max_chunk_chars),
        overlap_chars=_non_negative_int(overlap_chars),
        total_input_chars=_non_negative_int(total_input_chars),
        processing_started_at=processing_started_at,
        processing_completed_at=processing_completed_at,
    )


def processing_duration(started_at: float | None, completed_at: float | None) -> float | None:
    """Elapsed time between two timestamps, or None if either is missing or the span is invalid."""
    if started_at is None or completed_at is None:
        return None
    duration = completed_at - started_at
    if not math.isfinite(duration) or duration < 0:
        return None
    return duration
