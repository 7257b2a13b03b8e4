"""
HTTP middleware and rate limiting.

- request id: honours inbound X-Request-Id or generates one
- security headers on every response
- in-memory sliding-window rate limiter keyed by client IP
- request count, 5xx count and latency for the alerts job
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from collections import deque

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import errors, log, monitoring, settings

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "0",
}


class SlidingWindowLimiter:
    """
    Allow at most `max_hits` per `window_s` seconds for each key.
    State lives in process memory; each API worker keeps its own counters.
    """

    def __init__(self, *, name: str, max_hits: int, window_s: int, message: str) -> None:
        self.name = name
        self.max_hits = max_hits
        self.window_s = window_s
        self.message = message
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str, *, now: float | None = None) -> int | None:
        """
        Record a hit. Returns None when allowed, or seconds to wait when limited.
        """
        now = time.monotonic() if now is None else now
        bucket = self._hits.setdefault(key, deque())
        cutoff = now - self.window_s
        while bucket and bucket[0] <= cutoff:
            bucket.popleft()

        if len(bucket) >= self.max_hits:
            return max(1, math.ceil(bucket[0] + self.window_s - now))

        bucket.append(now)
        return None

    def reset(self) -> None:
        self._hits.clear()

    async def __call__(self, request: Request) -> None:
        # FastAPI dependency form: Depends(limiter)
        if not rate_limiting_enabled():
            return None
        retry_after = self.hit(client_ip(request))
        if retry_after is not None:
            logger.warning("rate_limited limiter=%s ip=%s", self.name, client_ip(request))
            raise errors.AppError.too_many_requests(
                self.message,
                code="RATE_LIMITED",
                extra={"retryAfter": retry_after},
            )


def rate_limiting_enabled() -> bool:
    return settings.env_bool("RATE_LIMIT_ENABLED", True)


api_limiter = SlidingWindowLimiter(
    name="api",
    max_hits=settings.env_int("RATE_LIMIT_API_MAX", 100),
    window_s=15 * 60,
    message="Too many requests, please try again later.",
)
auth_limiter = SlidingWindowLimiter(
    name="auth",
    max_hits=settings.env_int("RATE_LIMIT_AUTH_MAX", 5),
    window_s=15 * 60,
    message="Too many authentication attempts, please try again later.",
)
invite_limiter = SlidingWindowLimiter(
    name="invite",
    max_hits=settings.env_int("RATE_LIMIT_INVITE_MAX", 5),
    window_s=60 * 60,
    message="Too many invitations sent, please try again later.",
)

_EXEMPT_PATHS = {"/api/health", "/health", "/api/billing/webhook"}


def client_ip(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded and settings.env_bool("TRUST_PROXY", False):
        return forwarded
    return request.client.host if request.client else "unknown"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def install(app: FastAPI) -> None:
    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if (
            rate_limiting_enabled()
            and request.url.path.startswith("/api")
            and request.url.path not in _EXEMPT_PATHS
        ):
            retry_after = api_limiter.hit(client_ip(request))
            if retry_after is not None:
                logger.warning("rate_limited limiter=api ip=%s", client_ip(request))
                return JSONResponse(
                    status_code=429,
                    content=errors.error_body(
                        api_limiter.message,
                        code="RATE_LIMITED",
                        extra={"retryAfter": retry_after},
                    ),
                    headers={"Retry-After": str(retry_after)},
                )
        return await call_next(request)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if settings.is_production():
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    # Registered last so it runs first and wraps everything else.
    @app.middleware("http")
    async def request_id(request: Request, call_next):
        incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        rid = incoming[:128] if incoming else str(uuid.uuid4())
        request.state.request_id = rid
        token = log.set_request_id(rid)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            monitoring.request_metrics.record_request(500, _elapsed_ms(started))
            raise
        finally:
            log.reset_request_id(token)
        monitoring.request_metrics.record_request(response.status_code, _elapsed_ms(started))
        response.headers[REQUEST_ID_HEADER] = rid
        return response
