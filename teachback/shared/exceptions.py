"""
Exception hierarchy for teachback.
"""

from datetime import datetime
from typing import Optional


class TeachBackError(Exception):
    """Base exception for all teachback errors."""
    pass


class NotFoundError(TeachBackError):
    """Raised when a loop, concept, session or schedule does not exist."""
    pass


class AccessDeniedError(TeachBackError):
    """Raised when a loop belongs to a different user."""
    pass


class QuotaExceededError(TeachBackError):
    """Raised when the caller has used up their daily or monthly allowance."""

    def __init__(
        self,
        message: str,
        remaining: int = 0,
        reset_at: Optional[datetime] = None,
        limit: Optional[int] = None
    ):
        super().__init__(message)
        self.remaining = remaining
        self.reset_at = reset_at
        self.limit = limit


class ExtractionError(TeachBackError):
    """Raised inside the extractor when one extraction round fails."""
    pass


class EvaluationError(TeachBackError):
    """Raised when an explanation could not be evaluated."""
    pass


class InvalidStateError(TeachBackError):
    """Raised when an operation is not allowed in the loop's current state."""
    pass


class StoreError(TeachBackError):
    """Raised when a store operation fails."""
    pass
