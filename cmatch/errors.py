"""Error taxonomy shared by pipelines, stores and the API layer.

ValidationError and UpstreamError surface to the caller; ParseError and
PersistenceWarning are absorbed into a degraded result or a warning step.
"""
from __future__ import annotations


class MatchingServiceError(Exception):
    """Base class for all service errors."""
    pass


class ValidationError(MatchingServiceError):
    """Missing or malformed required input. Raised before any side effect."""
    pass


class UpstreamError(MatchingServiceError):
    """An oracle or a store is unreachable or returned an error."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class DuplicateRecordError(UpstreamError):
    """A store rejected a write because the record already exists."""
    pass


class ParseError(MatchingServiceError):
    """An oracle returned text that is not the expected structured output."""

    def __init__(self, message: str, *, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class PersistenceWarning(MatchingServiceError):
    """A non-critical store write failed; the run continues."""

    def __init__(self, message: str, *, duplicate: bool = False) -> None:
        super().__init__(message)
        self.duplicate = duplicate
