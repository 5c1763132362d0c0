from __future__ import annotations

"""
Problem+JSON exception handlers (RFC 7807).

Registered by `tunesnow.main.create_app`. All HTTP errors are rendered as
application/problem+json with a stable schema; `AppException` subclasses add
`code`, `error_kind`, `retryable` and `details` on top of it.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tunesnow.core.exceptions import AppException
from tunesnow.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)


def _problem(
    title: str,
    detail: str,
    status_code: int,
    request: Request,
    *,
    extra: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "type": "about:blank",
        "title": title,
        "detail": detail,
        "status": status_code,
        "instance": str(request.url),
    }
    if extra:
        content.update(extra)
    return JSONResponse(
        status_code=status_code,
        content=content,
        media_type="application/problem+json",
        headers=headers,
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:  # type: ignore
    body = exc.to_problem(fallback_request_id=get_request_id(request) or None)
    title = exc.__class__.__name__.replace("Exception", "").strip() or "Error"
    extra = {k: v for k, v in body.items() if k not in {"message", "error"}}
    if exc.status_code >= 500:
        logger.warning("%s: %s", title, exc.message, extra={"error_kind": extra.get("error_kind")})
    return _problem(title, exc.message, exc.status_code, request, extra=extra, headers=getattr(exc, "headers", None))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:  # type: ignore
    title = exc.__class__.__name__.replace("Exception", "").strip() or "Error"
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem(title, detail, exc.status_code, request, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore
    detail = "Validation error"
    return _problem(
        detail,
        detail,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        request,
        extra={"errors": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Strip non-JSON context (e.g. exception instances) from pydantic errors."""
    out: list[dict[str, Any]] = []
    for err in exc.errors():
        item = {k: v for k, v in err.items() if k in {"type", "loc", "msg"}}
        out.append(item)
    return out


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore
    # Hide internals; the traceback goes to the log only.
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _problem(
        "Internal Server Error",
        "An unexpected error occurred.",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        request,
    )


__all__ = [
    "app_exception_handler",
    "http_exception_handler",
    "validation_exception_handler",
    "global_exception_handler",
]
