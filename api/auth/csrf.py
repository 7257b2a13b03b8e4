"""
Double-submit CSRF protection.

`GET /api/auth/csrf-token` issues a signed token, stores it in the httpOnly
`__csrf` cookie and returns it in the body. Unsafe requests authenticated by
the session cookie must echo it in `X-CSRF-Token`. Bearer-authenticated
requests carry no ambient credentials and are not checked.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from core import errors, settings

from . import security

logger = logging.getLogger(__name__)

COOKIE_NAME = "__csrf"
HEADER_NAME = "X-CSRF-Token"
SESSION_COOKIE = "token"
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}

# Routes that establish a session or are called by third parties.
EXEMPT_PATHS = {
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/refresh",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/auth/verify-email",
    "/api/billing/webhook",
}


def _sign(nonce: str) -> str:
    return hmac.new(security.jwt_secret().encode("utf-8"), nonce.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_token() -> str:
    nonce = secrets.token_hex(16)
    return f"{nonce}.{_sign(nonce)}"


def is_valid_token(token: str | None) -> bool:
    nonce, _, signature = (token or "").partition(".")
    if not nonce or not signature:
        return False
    return hmac.compare_digest(_sign(nonce), signature)


def tokens_match(cookie_value: str | None, header_value: str | None) -> bool:
    if not cookie_value or not header_value:
        return False
    return hmac.compare_digest(cookie_value, header_value) and is_valid_token(header_value)


def set_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        samesite="strict",
        secure=settings.is_production(),
        path="/",
    )


def requires_check(request: Request) -> bool:
    if request.method.upper() in SAFE_METHODS:
        return False
    if not request.url.path.startswith("/api") or request.url.path in EXEMPT_PATHS:
        return False
    authorization = (request.headers.get("authorization") or "").strip().lower()
    if authorization.startswith("bearer "):
        return False
    return bool(request.cookies.get(SESSION_COOKIE))


def install(app: FastAPI) -> None:
    @app.middleware("http")
    async def csrf_protect(request: Request, call_next):
        if settings.env_bool("CSRF_ENABLED", True) and requires_check(request):
            if not tokens_match(request.cookies.get(COOKIE_NAME), request.headers.get(HEADER_NAME)):
                logger.warning("csrf_rejected method=%s path=%s", request.method, request.url.path)
                return JSONResponse(
                    status_code=403,
                    content=errors.error_body("Invalid CSRF token", code="CSRF_INVALID", request=request),
                )
        return await call_next(request)
