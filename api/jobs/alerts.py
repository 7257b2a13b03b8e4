"""
Alert thresholds over request metrics, the email queue and the DB pool.

Each check that is over its threshold logs one `alert` warning line; the
request metrics window is reset after every run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from core import db, monitoring, settings
from notifications import processor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    error_rate: float = 0.05
    p95_ms: float = 2000
    email_backlog: int = 100
    failed_webhooks: int = 3
    pool_usage: float = 0.9

    @classmethod
    def from_env(cls) -> "Thresholds":
        return cls(
            error_rate=settings.env_float("ALERT_ERROR_RATE", cls.error_rate),
            p95_ms=settings.env_float("ALERT_P95_MS", cls.p95_ms),
            email_backlog=settings.env_int("ALERT_EMAIL_BACKLOG", cls.email_backlog),
            failed_webhooks=settings.env_int("ALERT_FAILED_WEBHOOKS", cls.failed_webhooks),
            pool_usage=settings.env_float("ALERT_DB_POOL_USAGE", cls.pool_usage),
        )


@dataclass(frozen=True)
class Alert:
    metric: str
    value: float
    threshold: float


def _pool_usage() -> float | None:
    try:
        pool = db.pool()
    except RuntimeError:
        return None
    max_size = pool.get_max_size()
    if not max_size:
        return None
    return (pool.get_size() - pool.get_idle_size()) / max_size


async def _email_backlog() -> int | None:
    try:
        stats = await processor.queue_stats()
    except Exception:
        logger.exception("alert_check_failed metric=email_queue_backlog")
        return None
    return int(stats.get("pending") or 0)


async def check_alert_thresholds(
    thresholds: Thresholds | None = None,
    metrics: monitoring.RequestMetrics | None = None,
) -> list[Alert]:
    thresholds = thresholds or Thresholds.from_env()
    window = (metrics or monitoring.request_metrics).snapshot(reset=True)

    alerts: list[Alert] = []
    if window.total_requests and window.error_rate > thresholds.error_rate:
        alerts.append(Alert("error_rate", round(window.error_rate, 4), thresholds.error_rate))
    if window.response_times_ms and window.p95_ms > thresholds.p95_ms:
        alerts.append(Alert("p95_response_time_ms", round(window.p95_ms, 1), thresholds.p95_ms))
    if window.failed_webhooks > thresholds.failed_webhooks:
        alerts.append(Alert("failed_webhooks", window.failed_webhooks, thresholds.failed_webhooks))

    backlog = await _email_backlog()
    if backlog is not None and backlog > thresholds.email_backlog:
        alerts.append(Alert("email_queue_backlog", backlog, thresholds.email_backlog))

    usage = _pool_usage()
    if usage is not None and usage > thresholds.pool_usage:
        alerts.append(Alert("db_pool_usage", round(usage, 2), thresholds.pool_usage))

    for alert in alerts:
        logger.warning("alert metric=%s value=%s threshold=%s", alert.metric, alert.value, alert.threshold)
    return alerts
