"""Exception hierarchy for the corpus → index pipeline.

Every failure raised by a pipeline stage derives from :class:`IndexingError`
so the HTTP layer can report it uniformly.  The four branches mirror who is
at fault: the caller's input, the embedding provider, the code itself, or
the storage layer.
"""

from __future__ import annotations

from typing import Any


class IndexingError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Serialisable error detail for API responses."""
        return {"type": type(self).__name__, "detail": self.message, **self.details}


# ── Input ─────────────────────────────────────────────────────────────
class InputError(IndexingError):
    """The corpus is missing or malformed.  Never retried."""


class NotFoundError(InputError):
    """The named resource does not exist."""

    def __init__(self, path: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["path"] = path
        super().__init__(f"Resource not found: {path}", details)


class ParseError(InputError):
    """The resource exists but is not a well-formed corpus."""


# ── Provider ──────────────────────────────────────────────────────────
class ProviderError(IndexingError):
    """The embedding provider call failed."""


class ProviderUnavailable(ProviderError):
    """Network, auth, or timeout failure talking to the provider."""


class RateLimited(ProviderError):
    """The provider throttled the request; the caller may back off and retry."""

    def __init__(
        self,
        message: str = "Embedding provider rate limit exceeded",
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        self.retry_after = retry_after
        super().__init__(message, details)


# ── Invariants ────────────────────────────────────────────────────────
class InvariantViolation(IndexingError):
    """An internal consistency check failed.  Indicates a defect, never retried."""


class DimensionMismatch(InvariantViolation):
    """Vectors in one batch or index do not share a dimensionality."""

    def __init__(self, expected: int, actual: int, position: int | None = None) -> None:
        details: dict[str, Any] = {"expected": expected, "actual": actual}
        if position is not None:
            details["position"] = position
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}", details
        )


# ── Storage ───────────────────────────────────────────────────────────
class StorageError(IndexingError):
    """Persisting an artifact failed."""


class WriteError(StorageError):
    """Writing or publishing an artifact failed; nothing was left under the final name."""
