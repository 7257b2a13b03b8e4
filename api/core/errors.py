"""
Application errors and the JSON error envelope.

Services raise `HTTPException` for plain failures and `AppError` when the
client needs a machine-readable `code` (plan limits, billing guard, CSRF).
Every error leaves the API as:

    {"status": "error", "message": "...", "code": "...", "requestId": "..."}
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import log, monitoring, settings

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        *,
        code: str | None = None,
        internal_message: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.code = code
        self.internal_message = internal_message
        self.extra = extra or {}

    @classmethod
    def bad_request(cls, message: str = "Bad request", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_400_BAD_REQUEST, **kwargs)

    @classmethod
    def unauthorized(cls, message: str = "Unauthorized", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_401_UNAUTHORIZED, **kwargs)

    @classmethod
    def payment_required(cls, message: str = "Payment required", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_402_PAYMENT_REQUIRED, **kwargs)

    @classmethod
    def forbidden(cls, message: str = "Forbidden", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_403_FORBIDDEN, **kwargs)

    @classmethod
    def not_found(cls, message: str = "Not found", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_404_NOT_FOUND, **kwargs)

    @classmethod
    def conflict(cls, message: str = "Conflict", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_409_CONFLICT, **kwargs)

    @classmethod
    def too_many_requests(cls, message: str = "Too many requests", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_429_TOO_MANY_REQUESTS, **kwargs)

    @classmethod
    def internal(cls, message: str = "Internal server error", **kwargs: Any) -> "AppError":
        return cls(message, status.HTTP_500_INTERNAL_SERVER_ERROR, **kwargs)


def error_body(
    message: str,
    *,
    code: str | None = None,
    extra: dict[str, Any] | None = None,
    request: Request | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"status": "error", "message": message}
    if code:
        body["code"] = code
    if extra:
        body.update(extra)
    request_id = log.current_request_id()
    if request_id is None and request is not None:
        request_id = getattr(request.state, "request_id", None)
    body["requestId"] = request_id
    return body


def _log_error(request: Request, status_code: int, message: str, internal: str | None = None) -> None:
    line = "request_error method=%s path=%s status=%s message=%s"
    args = (request.method, request.url.path, status_code, internal or message)
    if status_code >= 500:
        logger.error(line, *args)
    else:
        logger.warning(line, *args)


def _detail_message(detail: Any) -> str:
    if isinstance(detail, str):
        return detail
    if isinstance(detail, dict) and isinstance(detail.get("message"), str):
        return detail["message"]
    return "Request failed"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    _log_error(request, exc.status_code, exc.message, exc.internal_message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, code=exc.code, extra=exc.extra, request=request),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = _detail_message(exc.detail)
    if exc.status_code == status.HTTP_404_NOT_FOUND and message == "Not Found":
        message = "Route not found"
    _log_error(request, exc.status_code, message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message, request=request),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    _log_error(request, status.HTTP_400_BAD_REQUEST, message)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body(message, request=request))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    monitoring.capture_exception(exc, method=request.method, path=request.url.path)
    message = "Internal server error"
    if not settings.is_production():
        message = f"{message}: {exc}"
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_body(message, request=request))


def install(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
