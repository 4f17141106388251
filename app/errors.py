"""JSON error envelope for the renewals API.

Every error body has the same shape, so callers and log search can rely on
``request_id`` to tie a failed call to its log lines:

    {"code": "...", "message": "...", "details": null | object, "request_id": "..."}
"""
from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.services.renewals.errors import ConflictResolutionError, RenewalError

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def error_body(code: str, message: str, details: object, request_id: str) -> dict:
    return {
        "code": code,
        "message": message,
        "details": details,
        "request_id": request_id,
    }


def _split_detail(status_code: int, detail: object) -> tuple[str, str, object]:
    if isinstance(detail, dict):
        return (
            detail.get("code", f"http_{status_code}"),
            detail.get("message", "Request failed"),
            detail.get("details"),
        )
    if isinstance(detail, str):
        return f"http_{status_code}", detail, None
    return f"http_{status_code}", "Request failed", detail


def register_error_handlers(app: object) -> None:
    @app.exception_handler(HTTPException)  # type: ignore[arg-type]
    async def on_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        code, message, details = _split_detail(exc.status_code, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(code, message, details, _request_id(request)),
        )

    @app.exception_handler(RequestValidationError)  # type: ignore[arg-type]
    async def on_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        request_id = _request_id(request)
        logger.warning(
            "Rejected %s %s: %s",
            request.method,
            request.url.path,
            exc.errors(),
            extra={"request_id": request_id},
        )
        return JSONResponse(
            status_code=422,
            content=error_body(
                "validation_error", "Validation error", exc.errors(), request_id
            ),
        )

    @app.exception_handler(RenewalError)  # type: ignore[arg-type]
    async def on_renewal_error(request: Request, exc: RenewalError) -> JSONResponse:
        request_id = _request_id(request)
        logger.error(
            "Renewal failure on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            extra={"request_id": request_id},
        )
        if isinstance(exc, ConflictResolutionError):
            status_code, code = 409, "renewal_conflict"
        else:
            status_code, code = 422, "renewal_error"
        return JSONResponse(
            status_code=status_code,
            content=error_body(code, str(exc), None, request_id),
        )

    @app.exception_handler(Exception)  # type: ignore[arg-type]
    async def on_unhandled(request: Request, exc: Exception) -> JSONResponse:
        request_id = _request_id(request)
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            extra={"request_id": request_id},
        )
        return JSONResponse(
            status_code=500,
            content=error_body(
                "internal_error", "Internal server error", None, request_id
            ),
        )
