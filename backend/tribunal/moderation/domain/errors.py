"""Error taxonomy for the moderation engine.

Every failure a caller can act on is one of these kinds. Each carries the
HTTP status and a short machine readable ``detail`` used by the API layer.
"""

from __future__ import annotations

from fastapi import status


class ModerationError(Exception):
    """Base class for moderation workflow failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: str = "moderation_error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class ValidationError(ModerationError):
    """Malformed input: missing field, unknown enum value, ambiguous reference."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    detail = "validation_error"


class NotFoundError(ModerationError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "not_found"


class ConflictError(ModerationError):
    """Duplicate open appeal or a concurrent conflicting transition."""

    status_code = status.HTTP_409_CONFLICT
    detail = "conflict"


class InvalidStateError(ModerationError):
    """Transition attempted from a state that forbids it."""

    status_code = status.HTTP_409_CONFLICT
    detail = "invalid_state"


class ForbiddenError(ModerationError):
    """Actor lacks the role or ownership required for the operation."""

    status_code = status.HTTP_403_FORBIDDEN
    detail = "forbidden"
