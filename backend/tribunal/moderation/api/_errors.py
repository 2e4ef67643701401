"""Error translation helpers for the moderation API."""

from __future__ import annotations

from fastapi import HTTPException, status

from tribunal.moderation.domain.errors import ModerationError


def to_http_error(exc: Exception) -> HTTPException:
    """Translate domain exceptions to FastAPI HTTP errors."""
    if isinstance(exc, ModerationError):
        return HTTPException(status_code=exc.status_code, detail=exc.detail)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
