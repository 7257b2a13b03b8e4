"""
Error tracking and in-process request metrics.

Sentry is initialised only when `SENTRY_DSN` is set; without it
`capture_exception` is a no-op. Request metrics are kept per worker and are
read and reset by the alerts job (see `jobs/alerts.py`).
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from . import log, settings

logger = logging.getLogger(__name__)

# Samples kept between two alert checks; older ones are dropped first.
MAX_SAMPLES = 10_000


def init_error_tracking() -> bool:
    dsn = settings.env_str("SENTRY_DSN")
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.app_env(),
        integrations=[LoggingIntegration(level=logging.INFO, event_level=None)],
        traces_sample_rate=settings.env_float("SENTRY_TRACES_SAMPLE_RATE", 0.2 if settings.is_production() else 1.0),
        send_default_pii=False,
    )
    logger.info("error_tracking_enabled environment=%s", settings.app_env())
    return True


def capture_exception(exc: BaseException, **context: object) -> None:
    """
    Report an exception with the request id and any extra context as tags.
    """
    tags = {key: str(value) for key, value in context.items()}
    request_id = log.current_request_id()
    if request_id:
        tags["request_id"] = request_id
    # No-op until init_error_tracking() has run with a DSN.
    sentry_sdk.capture_exception(exc, tags=tags)


@dataclass
class MetricsSnapshot:
    total_requests: int = 0
    error_requests: int = 0
    response_times_ms: list[float] = field(default_factory=list)
    failed_webhooks: int = 0

    @property
    def error_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.error_requests / self.total_requests

    @property
    def p95_ms(self) -> float:
        if not self.response_times_ms:
            return 0.0
        ordered = sorted(self.response_times_ms)
        index = min(len(ordered) - 1, math.floor(len(ordered) * 0.95))
        return ordered[index]


class RequestMetrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current = MetricsSnapshot()
        self.window_started = time.monotonic()

    def record_request(self, status_code: int, duration_ms: float) -> None:
        with self._lock:
            self._current.total_requests += 1
            if status_code >= 500:
                self._current.error_requests += 1
            samples = self._current.response_times_ms
            samples.append(duration_ms)
            if len(samples) > MAX_SAMPLES:
                del samples[: len(samples) - MAX_SAMPLES]

    def record_failed_webhook(self) -> None:
        with self._lock:
            self._current.failed_webhooks += 1

    def snapshot(self, *, reset: bool = False) -> MetricsSnapshot:
        with self._lock:
            current = self._current
            if reset:
                self._current = MetricsSnapshot()
                self.window_started = time.monotonic()
                return current
            return MetricsSnapshot(
                total_requests=current.total_requests,
                error_requests=current.error_requests,
                response_times_ms=list(current.response_times_ms),
                failed_webhooks=current.failed_webhooks,
            )


request_metrics = RequestMetrics()
