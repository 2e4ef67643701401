"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tribunal.moderation.domain.errors import ModerationError, ValidationError
from tribunal.obs.logging import current_request_id


def _payload(detail: object, **extra: object) -> dict[str, object]:
    return {"detail": detail, "request_id": current_request_id() or "unknown", **extra}


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        return JSONResponse(status_code=exc.status_code, content=_payload(exc.detail), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        content = _payload("validation_error", errors=jsonable_encoder(exc.errors()))
        return JSONResponse(status_code=ValidationError.status_code, content=content)

    @app.exception_handler(ModerationError)
    async def moderation_exc_handler(request: Request, exc: ModerationError):  # type: ignore[override]
        return JSONResponse(status_code=exc.status_code, content=_payload(exc.detail))
