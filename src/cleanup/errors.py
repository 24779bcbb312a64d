"""Exception taxonomy for the cleanup engine."""

from __future__ import annotations


class CleanupError(Exception):
    """Base class for all cleanup engine errors."""


class ValidationError(CleanupError, ValueError):
    """Malformed input: bad chunk bounds, invalid patch, unknown flag status."""


class NotFoundError(CleanupError, LookupError):
    """A referenced document, revision, flag or blob does not exist."""


class ConflictError(CleanupError):
    """The requested operation clashes with current state.

    Raised when a pass is already queued or running for a document, or when
    a flag has already been resolved.
    """


class ApprovalBlockedError(CleanupError):
    """Approval was refused because flags remain unresolved or the checklist is incomplete."""

    def __init__(
        self,
        unresolved_count: int,
        unresolved_by_type: dict[str, int] | None = None,
        missing_items: list[str] | None = None,
    ) -> None:
        self.unresolved_count = unresolved_count
        self.unresolved_by_type = dict(unresolved_by_type or {})
        self.missing_items = list(missing_items or [])

        parts: list[str] = []
        if unresolved_count:
            breakdown = ", ".join(
                f"{kind}={count}" for kind, count in sorted(self.unresolved_by_type.items())
            )
            parts.append(f"{unresolved_count} unresolved flag(s) ({breakdown})")
        if self.missing_items:
            parts.append(f"checklist incomplete: {', '.join(self.missing_items)}")
        super().__init__("Approval blocked: " + "; ".join(parts or ["unknown reason"]))


class ProviderError(CleanupError, RuntimeError):
    """The text-improvement provider failed or returned an unusable response."""
