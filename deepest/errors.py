"""Error taxonomy for research runs.

Everything raised on purpose by the pipeline derives from ``DeepestError`` so
callers can catch the whole family at once. ``ResearchCancelled`` is part of the
family but is not a failure: callers should treat it as an acknowledgment.
"""
from __future__ import annotations

from typing import Any


class DeepestError(Exception):
    """Base exception for research pipeline errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


class ConfigurationError(DeepestError):
    """No collaborator configured, or the configured one cannot be reached.

    Fatal and never retried.
    """


class ProviderError(DeepestError):
    """A reachable collaborator failed a single call (rate limit, 5xx, timeout)."""


class TransientFormatError(DeepestError):
    """Collaborator output failed shape or count validation."""

    def __init__(
        self,
        message: str = "Malformed collaborator output",
        raw_output: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.raw_output = raw_output


class ExtractionFailure(DeepestError):
    """A single chunk or source yielded no learnings after retries."""

    def __init__(
        self,
        message: str = "Learning extraction failed",
        url: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.url = url


class SectionError(DeepestError):
    """A planned section ended with zero learnings."""

    def __init__(
        self,
        message: str = "",
        section: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or f"No learnings found for section: {section}", details)
        self.section = section


class ResearchCancelled(DeepestError):
    """The in-flight research run was cancelled by the caller."""

    def __init__(self, message: str = "Research cancelled by user", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details)


class PersistenceError(DeepestError):
    """Writing the final document failed. The research result is still valid."""


NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (ConfigurationError, ResearchCancelled)
