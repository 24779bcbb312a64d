"""Cleanup profile system — loads, validates, and provides access to YAML cleanup profiles."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .decision_policy import AmbiguityKind, DEFAULT_THRESHOLDS


@dataclass
class PreprocessConfig:
    """Switches for the deterministic pass."""
    preserve_archaic: bool = True
    unwrap: bool = True
    normalize_punctuation: bool = True


@dataclass
class ChunkingConfig:
    """Window sizes used when splitting text for the provider."""
    max_chunk_chars: int = 8000
    overlap_chars: int = 200


@dataclass
class ProviderConfig:
    """Text-improvement provider settings."""
    kind: str = "none"
    base_url: str = "http://localhost:11434"
    model: str = "llama3.1"
    timeout: float = 120.0
    max_attempts: int = 3
    rate_limit_delay: float = 0.5
    api_key_env: str | None = None

    @property
    def api_key(self) -> str | None:
        if not self.api_key_env:
            return None
        return os.environ.get(self.api_key_env) or None


@dataclass
class CleanupProfile:
    """Complete cleanup profile loaded from YAML."""
    profile_id: str
    source_format: str = "gutenberg_txt"
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    thresholds: dict[str, float] = field(default_factory=dict)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    blob_dir: str = "blobs"


VALID_SOURCE_FORMATS = {"gutenberg_txt", "markdown"}
VALID_PROVIDER_KINDS = {"none", "ollama"}


def default_profile() -> CleanupProfile:
    """Profile used when no YAML file is given."""
    return CleanupProfile(profile_id="default")


def load_profile(path: str | Path) -> CleanupProfile:
    """Load a cleanup profile from a YAML file.

    Args:
        path: Path to the YAML profile file.

    Returns:
        A CleanupProfile instance. Missing sections take their defaults.

    Raises:
        FileNotFoundError: If the profile file does not exist.
        ValueError: If the YAML is not a mapping or a section has the wrong shape.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Profile file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping at the top level.")

    preprocess = _section(data, "preprocess")
    chunking = _section(data, "chunking")
    policy = _section(data, "decision_policy")
    provider = _section(data, "provider")

    thresholds = policy.get("thresholds", {}) or {}
    if not isinstance(thresholds, dict):
        raise ValueError("decision_policy.thresholds must be a mapping.")

    defaults = ProviderConfig()
    return CleanupProfile(
        profile_id=str(data.get("profile_id", "")),
        source_format=data.get("source_format", "gutenberg_txt"),
        preprocess=PreprocessConfig(
            preserve_archaic=bool(preprocess.get("preserve_archaic", True)),
            unwrap=bool(preprocess.get("unwrap", True)),
            normalize_punctuation=bool(preprocess.get("normalize_punctuation", True)),
        ),
        chunking=ChunkingConfig(
            max_chunk_chars=chunking.get("max_chunk_chars", 8000),
            overlap_chars=chunking.get("overlap_chars", 200),
        ),
        thresholds={str(k): v for k, v in thresholds.items()},
        provider=ProviderConfig(
            kind=provider.get("kind", defaults.kind),
            base_url=provider.get("base_url", defaults.base_url),
            model=provider.get("model", defaults.model),
            timeout=provider.get("timeout", defaults.timeout),
            max_attempts=provider.get("max_attempts", defaults.max_attempts),
            rate_limit_delay=provider.get("rate_limit_delay", defaults.rate_limit_delay),
            api_key_env=provider.get("api_key_env"),
        ),
        blob_dir=data.get("blob_dir", "blobs"),
    )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Profile section '{name}' must be a mapping.")
    return value


def validate_profile(profile: CleanupProfile) -> list[str]:
    """Validate a loaded profile for completeness and correctness.

    Returns a list of validation error messages. Empty list means valid.
    """
    errors: list[str] = []

    if not profile.profile_id:
        errors.append("profile_id is required and must not be empty.")

    if profile.source_format not in VALID_SOURCE_FORMATS:
        errors.append(
            f"source_format '{profile.source_format}' is not valid. "
            f"Must be one of: {', '.join(sorted(VALID_SOURCE_FORMATS))}."
        )

    max_chars = profile.chunking.max_chunk_chars
    overlap = profile.chunking.overlap_chars
    if not isinstance(max_chars, int) or isinstance(max_chars, bool) or max_chars <= 0:
        errors.append("chunking.max_chunk_chars must be a positive integer.")
    elif not isinstance(overlap, int) or isinstance(overlap, bool) or not 0 <= overlap < max_chars:
        errors.append("chunking.overlap_chars must be an integer >= 0 and less than max_chunk_chars.")

    known_kinds = {kind.value for kind in DEFAULT_THRESHOLDS}
    for kind, value in profile.thresholds.items():
        if kind not in known_kinds:
            errors.append(
                f"decision_policy.thresholds has unknown kind '{kind}'. "
                f"Must be one of: {', '.join(sorted(known_kinds))}."
            )
        elif isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"decision_policy.thresholds.{kind} must be a number.")

    if profile.provider.kind not in VALID_PROVIDER_KINDS:
        errors.append(
            f"provider.kind '{profile.provider.kind}' is not valid. "
            f"Must be one of: {', '.join(sorted(VALID_PROVIDER_KINDS))}."
        )
    if profile.provider.max_attempts < 1:
        errors.append("provider.max_attempts must be at least 1.")
    if profile.provider.rate_limit_delay < 0:
        errors.append("provider.rate_limit_delay must not be negative.")

    return errors


def threshold_overrides(profile: CleanupProfile) -> dict[AmbiguityKind, float]:
    """Profile thresholds keyed by ambiguity kind, ready for the decision policy."""
    return {AmbiguityKind(kind): float(value) for kind, value in profile.thresholds.items()}
