"""Text-improvement providers that propose patches for a text segment."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from .errors import ProviderError, ValidationError
from .patches import Patch, PatchStats, calculate_patch_stats, check_patch, patch_from_dict
from .profile import ProviderConfig

logger = logging.getLogger(__name__)


MAX_SUMMARY_CHARS = 500
CONTEXT_CHARS = 300

CLEANUP_SYSTEM_PROMPT = """\
You are a preservation-focused editor cleaning OCR-scanned public domain literature.

## Core Mission
Fix OCR errors and obvious typographical damage while preserving the author's
original voice, spelling and grammar from their era.

## Never Change
- Archaic or British spelling: "to-day", "shewn", "colour", "analyse"
- Archaic grammar and contractions: "thou hast", "'Tis", "'Twas", subjunctives
- Dialect and dialogue: dropped g's ("goin'"), eye dialect ("sez")
- Stylistic choices: repetition, fragments, long sentences, unusual punctuation

## You May Fix
HIGH confidence (clear OCR errors):
- Garbled characters: "1ove" -> "love", "f0r" -> "for"
- Words split across line breaks: "con- versation" -> "conversation"
- Doubled words: "the the" -> "the"
LOW confidence (uncertain, will be reviewed by a person):
- Possible typos that might be intentional
- Punctuation that may be archaic rather than wrong

## Output
Return JSON only:
{"patches": [{"start": int, "end": int, "original": str, "replacement": str,
  "confidence": "high"|"low", "confidenceScore": number (optional, 0..1),
  "reason": str (max 200 chars),
  "category": "ocr_error"|"punctuation_normalization"|"typo_correction"|"hyphenation_fix"|"formatting"}],
 "summary": str (max 500 chars),
 "preservationNotes": [str],
 "stats": {"highConfidencePatches": int, "lowConfidencePatches": int,
           "ocrErrorsFixed": int, "punctuationNormalizations": int}}
Offsets are character offsets into TEXT TO ANALYZE, end exclusive, and
"original" must equal that exact slice.

When in doubt, preserve.
"""


@dataclass
class SegmentContext:
    """Where a segment sits in the document, for the prompt."""
    chapter_title: str | None = None
    chapter_number: int | None = None
    total_chapters: int | None = None
    segment_number: int | None = None
    total_segments: int | None = None
    previous_context: str | None = None
    next_context: str | None = None


@dataclass
class ProviderResponse:
    """Validated provider output for one segment. Offsets are segment-relative."""
    patches: list[Patch] = field(default_factory=list)
    summary: str = ""
    preservation_notes: list[str] = field(default_factory=list)
    stats: PatchStats = field(default_factory=PatchStats)
    rejected: list[str] = field(default_factory=list)


class TextImprovementProvider(Protocol):
    """Anything that can propose patches for a segment of text."""

    model: str

    def is_configured(self) -> bool: ...

    def propose(self, text: str, context: SegmentContext) -> ProviderResponse: ...


class NullProvider:
    """Provider used when none is configured; proposes nothing."""

    model = "none"

    def is_configured(self) -> bool:
        return False

    def propose(self, text: str, context: SegmentContext) -> ProviderResponse:
        return ProviderResponse(summary="No provider configured")


def build_segment_prompt(text: str, context: SegmentContext) -> str:
    """Build the user prompt for one segment."""
    prompt = "# Text Cleanup Analysis Request\n\n"

    if context.chapter_title or context.chapter_number:
        prompt += "## Chapter Context\n"
        if context.chapter_title:
            prompt += f"Title: {context.chapter_title}\n"
        if context.chapter_number and context.total_chapters:
            prompt += f"Position: Chapter {context.chapter_number} of {context.total_chapters}\n"
        elif context.chapter_number:
            prompt += f"Chapter: {context.chapter_number}\n"
        prompt += "\n"

    if context.segment_number and context.total_segments:
        prompt += f"## Segment {context.segment_number} of {context.total_segments}\n\n"

    if context.previous_context:
        prompt += (
            "## Preceding Context (for continuity)\n"
            f"```\n...{context.previous_context[-CONTEXT_CHARS:]}\n```\n\n"
        )

    prompt += f"## TEXT TO ANALYZE\n\n```\n{text}\n```\n\n"

    if context.next_context:
        prompt += (
            "## Following Context (for continuity)\n"
            f"```\n{context.next_context[:CONTEXT_CHARS]}...\n```\n\n"
        )

    prompt += (
        "## Instructions\n"
        "Analyze the TEXT TO ANALYZE section above.\n"
        "Suggest edits following the preservation-first policy.\n"
        "Return your response as JSON matching the specified schema.\n"
        "If no changes are needed, return an empty patches array.\n"
    )
    return prompt


def parse_cleanup_response(raw: Any, text: str) -> ProviderResponse:
    """Validate decoded provider JSON against the segment it was asked about.

    Patches with a bad shape, bad offsets or a stale ``original`` are dropped
    and listed in ``rejected``; statistics are recomputed from what remains.

    Raises:
        ProviderError: If the response is not an object with a ``patches`` list.
    """
    if not isinstance(raw, dict):
        raise ProviderError(f"Provider response must be a JSON object, got {type(raw).__name__}")
    raw_patches = raw.get("patches")
    if not isinstance(raw_patches, list):
        raise ProviderError("Provider response is missing a 'patches' list")

    response = ProviderResponse(
        summary=str(raw.get("summary") or "")[:MAX_SUMMARY_CHARS],
        preservation_notes=[str(n) for n in raw.get("preservationNotes") or [] if n],
    )
    for index, item in enumerate(raw_patches):
        try:
            patch = patch_from_dict(item)
        except ValidationError as e:
            response.rejected.append(f"patch {index}: {e}")
            continue
        error = check_patch(text, patch)
        if error is not None:
            response.rejected.append(f"patch {index}: {error}")
            continue
        response.patches.append(patch)

    if response.rejected:
        logger.warning(
            "Dropped %d of %d proposed patches: %s",
            len(response.rejected), len(raw_patches), "; ".join(response.rejected[:3]),
        )
    response.stats = calculate_patch_stats(response.patches)
    return response


class OllamaProvider:
    """Patch proposals from a local Ollama chat model.

    Connection errors, timeouts and 5xx responses are retried with
    exponential backoff; anything else fails the segment immediately.
    """

    def __init__(
        self,
        model: str = "llama3.1",
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        max_attempts: int = 3,
        api_key: str | None = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.api_key = api_key

    def is_configured(self) -> bool:
        return bool(self.model and self.base_url)

    def _chat(self, prompt: str) -> str:
        url = f"{self.base_url}/api/chat"
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": CLEANUP_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "format": "json",
            "stream": False,
            "options": {"temperature": 0},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        last_error: Exception | None = None

        for attempt in range(self.max_attempts):
            try:
                response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
                if response.status_code >= 500:
                    last_error = RuntimeError(f"Server error: HTTP {response.status_code}")
                    if attempt < self.max_attempts - 1:
                        time.sleep(2 ** attempt)
                    continue
                response.raise_for_status()
                data = response.json()
                return data["message"]["content"]
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
                last_error = exc
                if attempt < self.max_attempts - 1:
                    time.sleep(2 ** attempt)
            except requests.exceptions.HTTPError as exc:
                raise ProviderError(f"Provider request rejected: {exc}") from exc
            except requests.exceptions.RequestException as exc:
                raise ProviderError(f"Provider request failed: {exc}") from exc
            except (KeyError, TypeError, ValueError) as exc:
                raise ProviderError(f"Unexpected provider reply: {exc}") from exc

        raise ProviderError(f"Provider request failed after {self.max_attempts} attempts: {last_error}")

    def propose(self, text: str, context: SegmentContext) -> ProviderResponse:
        """Ask the model for patches to ``text``.

        Raises:
            ProviderError: If the request fails or the reply is not valid JSON.
        """
        content = self._chat(build_segment_prompt(text, context))
        if not isinstance(content, str):
            raise ProviderError(f"Provider reply content must be a string, got {type(content).__name__}")
        try:
            raw = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ProviderError(f"Provider returned unparsable JSON: {exc}") from exc
        return parse_cleanup_response(raw, text)


def build_provider(config: ProviderConfig) -> TextImprovementProvider:
    """Provider described by a profile's ``provider`` section."""
    if config.kind == "ollama":
        return OllamaProvider(
            model=config.model,
            base_url=config.base_url,
            timeout=config.timeout,
            max_attempts=config.max_attempts,
            api_key=config.api_key,
        )
    return NullProvider()
