"""
Tests for error tracking, request metrics and the alert thresholds job.
"""

import logging

import pytest
import sentry_sdk
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from billing import service as billing
from core import db, errors, log, monitoring, stripe_client
from jobs import alerts, scheduler
from main import app
from notifications import processor

from conftest import Recorder


@pytest.fixture
def metrics(monkeypatch):
    fresh = monitoring.RequestMetrics()
    monkeypatch.setattr(monitoring, "request_metrics", fresh)
    return fresh


@pytest.fixture
def backlog(monkeypatch):
    def _set(pending):
        monkeypatch.setattr(
            processor,
            "queue_stats",
            Recorder({"pending": pending, "sent": 0, "failed": 0, "retrying": 0}),
        )

    _set(0)
    return _set


class TestErrorTracking:
    def test_disabled_without_dsn(self, monkeypatch):
        init = Recorder()
        monkeypatch.delenv("SENTRY_DSN", raising=False)
        monkeypatch.setattr(sentry_sdk, "init", init)
        assert monitoring.init_error_tracking() is False
        assert init.calls == []

    def test_initialised_from_env(self, monkeypatch):
        calls = []
        monkeypatch.setenv("SENTRY_DSN", "https://key@sentry.example/1")
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setattr(sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))

        assert monitoring.init_error_tracking() is True
        assert calls[0]["dsn"] == "https://key@sentry.example/1"
        assert calls[0]["environment"] == "production"
        assert calls[0]["traces_sample_rate"] == 0.2
        assert calls[0]["send_default_pii"] is False

    def test_capture_tags_request_id_and_context(self, monkeypatch):
        captured = []
        monkeypatch.setattr(sentry_sdk, "capture_exception", lambda exc, **kw: captured.append((exc, kw)))
        exc = RuntimeError("boom")

        token = log.set_request_id("req-9")
        try:
            monitoring.capture_exception(exc, path="/api/tasks", status=500)
        finally:
            log.reset_request_id(token)

        assert captured == [(exc, {"tags": {"path": "/api/tasks", "status": "500", "request_id": "req-9"}})]

    def test_unhandled_errors_are_reported(self, monkeypatch):
        reported = []
        monkeypatch.setattr(monitoring, "capture_exception", lambda exc, **kw: reported.append((str(exc), kw)))
        bare_app = FastAPI()
        errors.install(bare_app)

        @bare_app.get("/boom")
        async def boom():
            raise RuntimeError("kaboom")

        resp = TestClient(bare_app, raise_server_exceptions=False).get("/boom")

        assert resp.status_code == 500
        assert reported == [("kaboom", {"method": "GET", "path": "/boom"})]

    def test_handled_errors_are_not_reported(self, monkeypatch):
        reported = Recorder()
        monkeypatch.setattr(monitoring, "capture_exception", reported)
        TestClient(app).get("/api/nope")
        assert reported.calls == []


class TestRequestMetrics:
    def test_error_rate_counts_only_5xx(self):
        metrics = monitoring.RequestMetrics()
        for status_code in (200, 404, 500, 503):
            metrics.record_request(status_code, 10)
        assert metrics.snapshot().error_rate == 0.5

    def test_p95(self):
        metrics = monitoring.RequestMetrics()
        for ms in range(1, 101):
            metrics.record_request(200, float(ms))
        assert metrics.snapshot().p95_ms == 96.0

    def test_empty_window(self):
        window = monitoring.RequestMetrics().snapshot()
        assert window.error_rate == 0.0
        assert window.p95_ms == 0.0

    def test_reset_starts_a_new_window(self):
        metrics = monitoring.RequestMetrics()
        metrics.record_request(500, 5)
        metrics.record_failed_webhook()

        first = metrics.snapshot(reset=True)

        assert (first.total_requests, first.failed_webhooks) == (1, 1)
        assert metrics.snapshot().total_requests == 0
        assert metrics.snapshot().failed_webhooks == 0

    def test_samples_are_bounded(self, monkeypatch):
        monkeypatch.setattr(monitoring, "MAX_SAMPLES", 3)
        metrics = monitoring.RequestMetrics()
        for ms in (1, 2, 3, 4, 5):
            metrics.record_request(200, ms)
        window = metrics.snapshot()
        assert window.total_requests == 5
        assert window.response_times_ms == [3, 4, 5]

    def test_middleware_records_every_request(self, metrics):
        http = TestClient(app)
        http.get("/api/health")
        http.get("/api/nope")

        window = metrics.snapshot()
        assert window.total_requests == 2
        assert window.error_requests == 0
        assert len(window.response_times_ms) == 2


class TestAlertThresholds:
    async def test_quiet_when_everything_is_within_limits(self, metrics, backlog, caplog):
        metrics.record_request(200, 50)

        with caplog.at_level(logging.WARNING, logger=alerts.__name__):
            found = await alerts.check_alert_thresholds(alerts.Thresholds())

        assert found == []
        assert "alert" not in caplog.text

    async def test_error_rate_and_latency(self, metrics, backlog, caplog):
        for _ in range(9):
            metrics.record_request(200, 2500)
        metrics.record_request(500, 100)

        with caplog.at_level(logging.WARNING, logger=alerts.__name__):
            found = await alerts.check_alert_thresholds(alerts.Thresholds())

        assert [a.metric for a in found] == ["error_rate", "p95_response_time_ms"]
        assert found[0].value == 0.1
        assert found[1].value == 2500.0
        assert "alert metric=error_rate value=0.1 threshold=0.05" in caplog.text

    async def test_email_backlog(self, metrics, backlog):
        backlog(101)
        found = await alerts.check_alert_thresholds(alerts.Thresholds())
        assert found == [alerts.Alert("email_queue_backlog", 101, 100)]

    async def test_backlog_at_threshold_is_fine(self, metrics, backlog):
        backlog(100)
        assert await alerts.check_alert_thresholds(alerts.Thresholds()) == []

    async def test_failed_webhooks(self, metrics, backlog):
        for _ in range(4):
            metrics.record_failed_webhook()
        found = await alerts.check_alert_thresholds(alerts.Thresholds())
        assert found == [alerts.Alert("failed_webhooks", 4, 3)]

    async def test_backlog_query_failure_does_not_stop_other_checks(self, metrics, monkeypatch, caplog):
        async def broken_stats():
            raise RuntimeError("relation email_queue does not exist")

        monkeypatch.setattr(processor, "queue_stats", broken_stats)
        metrics.record_request(500, 10)

        found = await alerts.check_alert_thresholds(alerts.Thresholds())

        assert [a.metric for a in found] == ["error_rate"]
        assert "alert_check_failed metric=email_queue_backlog" in caplog.text

    async def test_db_pool_usage(self, metrics, backlog, monkeypatch):
        class BusyPool:
            def get_max_size(self):
                return 10

            def get_size(self):
                return 10

            def get_idle_size(self):
                return 0

        monkeypatch.setattr(db, "pool", lambda: BusyPool())
        found = await alerts.check_alert_thresholds(alerts.Thresholds())
        assert found == [alerts.Alert("db_pool_usage", 1.0, 0.9)]

    async def test_window_is_reset_after_each_check(self, metrics, backlog):
        metrics.record_request(500, 10)
        assert await alerts.check_alert_thresholds(alerts.Thresholds())
        assert await alerts.check_alert_thresholds(alerts.Thresholds()) == []

    def test_thresholds_from_env(self, monkeypatch):
        monkeypatch.setenv("ALERT_ERROR_RATE", "0.2")
        monkeypatch.setenv("ALERT_EMAIL_BACKLOG", "500")
        monkeypatch.setenv("ALERT_P95_MS", "oops")
        thresholds = alerts.Thresholds.from_env()
        assert thresholds.error_rate == 0.2
        assert thresholds.email_backlog == 500
        assert thresholds.p95_ms == 2000

    def test_scheduled_every_minute(self):
        jobs = {job.name: job for job in scheduler.default_jobs()}
        assert jobs["alerts"].interval_s == 60.0
        assert jobs["alerts"].enabled_env == "ALERTS_ENABLED"


class TestFailedWebhooks:
    async def test_bad_signature_is_counted(self, metrics, monkeypatch):
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
        with pytest.raises(HTTPException) as exc_info:
            await billing.handle_webhook(b"{}", "t=1,v1=bad")
        assert exc_info.value.status_code == 400
        assert metrics.snapshot().failed_webhooks == 1

    async def test_processing_failure_is_counted(self, metrics, monkeypatch):
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
        monkeypatch.setattr(stripe_client, "construct_event", lambda *a, **k: {"type": "invoice.paid"})

        async def failing_handle(event):
            raise RuntimeError("db down")

        monkeypatch.setattr(billing, "handle_event", failing_handle)
        with pytest.raises(RuntimeError):
            await billing.handle_webhook(b"{}", "t=1,v1=x")
        assert metrics.snapshot().failed_webhooks == 1
