"""
Tests for the subscription guard, plan limits and Stripe event handling.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
from starlette.requests import Request

from billing import guard, limits
from billing import repository as billing_repository
from billing import service as billing
from core import db
from core.errors import AppError
from notifications import queue as email_queue
from workspaces import repository as workspaces_repository

from conftest import WORKSPACE_ID, Recorder


class TestGuard:
    async def test_no_workspace_is_free(self):
        assert await guard.require_active_subscription(None) == {"planId": "free", "status": "active"}

    async def test_missing_subscription_is_free(self, monkeypatch):
        monkeypatch.setattr(billing_repository, "get_subscription", Recorder(None))
        assert (await guard.require_active_subscription(WORKSPACE_ID))["planId"] == "free"

    @pytest.mark.parametrize(
        "sub_status,code",
        [("canceled", "SUBSCRIPTION_CANCELED"), ("past_due", "PAYMENT_PAST_DUE")],
    )
    async def test_blocked_statuses(self, monkeypatch, sub_status, code):
        monkeypatch.setattr(
            billing_repository,
            "get_subscription",
            Recorder({"plan_id": "pro", "plan_name": "Pro", "status": sub_status}),
        )
        with pytest.raises(AppError) as exc_info:
            await guard.require_active_subscription(WORKSPACE_ID)
        assert exc_info.value.status_code == 402
        assert exc_info.value.code == code

    async def test_trialing_passes(self, monkeypatch):
        monkeypatch.setattr(
            billing_repository,
            "get_subscription",
            Recorder({"plan_id": "pro", "plan_name": "Pro", "status": "trialing"}),
        )
        assert await guard.require_active_subscription(WORKSPACE_ID) == {
            "planId": "pro",
            "planName": "Pro",
            "status": "trialing",
        }

    async def test_lookup_failure_lets_the_request_through(self, monkeypatch):
        async def boom(workspace_id):
            raise ConnectionError("db down")

        monkeypatch.setattr(billing_repository, "get_subscription", boom)
        assert (await guard.require_active_subscription(WORKSPACE_ID))["status"] == "active"

    async def test_dependency_reads_workspace_from_path(self, monkeypatch):
        lookup = Recorder(None)
        monkeypatch.setattr(billing_repository, "get_subscription", lookup)
        request = Request(
            {
                "type": "http",
                "method": "POST",
                "path": f"/api/workspaces/{WORKSPACE_ID}/invite",
                "headers": [],
                "query_string": b"",
                "path_params": {"workspace_id": str(WORKSPACE_ID)},
            }
        )
        await guard.active_subscription(request)
        assert lookup.calls == [((WORKSPACE_ID,), {})]

    async def test_dependency_ignores_malformed_ids(self, monkeypatch):
        lookup = Recorder(None)
        monkeypatch.setattr(billing_repository, "get_subscription", lookup)
        request = Request(
            {"type": "http", "method": "POST", "path": "/", "headers": [], "query_string": b"workspace_id=nope"}
        )
        assert (await guard.active_subscription(request))["planId"] == "free"
        assert lookup.calls == []


class TestLimits:
    def _plan(self, monkeypatch, **row):
        monkeypatch.setattr(billing_repository, "get_effective_plan", Recorder(row or None))

    async def test_task_limit_reached_on_free_plan(self, monkeypatch):
        self._plan(monkeypatch)
        monkeypatch.setattr(billing_repository, "count_top_level_tasks", Recorder(50))
        with pytest.raises(AppError) as exc_info:
            await limits.check_task_limit(WORKSPACE_ID)
        err = exc_info.value
        assert err.status_code == 403
        assert err.code == "PLAN_LIMIT_TASKS"
        assert err.extra == {"limit": 50, "current": 50, "planId": "free"}

    async def test_task_limit_under_cap(self, monkeypatch):
        self._plan(monkeypatch)
        monkeypatch.setattr(billing_repository, "count_top_level_tasks", Recorder(49))
        await limits.check_task_limit(WORKSPACE_ID)

    async def test_unlimited_plan_skips_counting(self, monkeypatch):
        self._plan(monkeypatch, plan_id="pro", max_members=50, max_tasks=None, features={})
        counter = Recorder(10_000)
        monkeypatch.setattr(billing_repository, "count_top_level_tasks", counter)
        await limits.check_task_limit(WORKSPACE_ID)
        assert counter.calls == []

    async def test_member_limit_counts_pending_invitations(self, monkeypatch):
        self._plan(monkeypatch)
        monkeypatch.setattr(workspaces_repository, "count_members", Recorder(2))
        monkeypatch.setattr(workspaces_repository, "count_pending_invitations", Recorder(1))
        with pytest.raises(AppError) as exc_info:
            await limits.check_member_limit(WORKSPACE_ID)
        assert exc_info.value.code == "PLAN_LIMIT_MEMBERS"
        assert exc_info.value.extra["current"] == 3

    async def test_workspace_limit_depends_on_pro(self, monkeypatch):
        monkeypatch.setattr(workspaces_repository, "count_owned", Recorder(1))
        monkeypatch.setattr(billing_repository, "user_has_pro_workspace", Recorder(False))
        with pytest.raises(AppError) as exc_info:
            await limits.check_workspace_limit(7)
        assert exc_info.value.code == "PLAN_LIMIT_WORKSPACES"

        monkeypatch.setattr(billing_repository, "user_has_pro_workspace", Recorder(True))
        await limits.check_workspace_limit(7)

    async def test_limit_check_failure_is_permissive(self, monkeypatch):
        async def boom(workspace_id):
            raise ConnectionError("db down")

        monkeypatch.setattr(billing_repository, "get_effective_plan", boom)
        await limits.check_task_limit(WORKSPACE_ID)


class TestStripeStatus:
    @pytest.mark.parametrize(
        "stripe_status,expected",
        [
            ("active", "active"),
            ("trialing", "trialing"),
            ("past_due", "past_due"),
            ("unpaid", "past_due"),
            ("incomplete", "past_due"),
            ("incomplete_expired", "canceled"),
            ("paused", "canceled"),
            ("canceled", "canceled"),
            ("something_new", "active"),
            (None, "active"),
        ],
    )
    def test_mapping(self, stripe_status, expected):
        assert billing.map_stripe_status(stripe_status) == expected


def _event(event_type, **obj):
    obj.setdefault("metadata", {"workspace_id": str(WORKSPACE_ID)})
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


class TestHandleEvent:
    @pytest.fixture
    def writes(self, monkeypatch):
        """Repository writes made by handle_event, keyed by function name."""
        calls = {}

        @asynccontextmanager
        async def transaction():
            yield "conn"

        def record(name):
            async def _write(conn, **kwargs):
                assert conn == "conn"
                calls.setdefault(name, []).append(kwargs)

            return _write

        monkeypatch.setattr(db, "transaction", transaction)
        for name in ("apply_stripe_subscription", "downgrade_to_free", "set_status", "insert_invoice"):
            monkeypatch.setattr(billing_repository, name, record(name))
        return calls

    @pytest.mark.parametrize("event_type", ["customer.subscription.created", "customer.subscription.updated"])
    async def test_subscription_upsert(self, writes, event_type):
        event = _event(
            event_type,
            id="sub_1",
            status="trialing",
            trial_end=1767225600,
            current_period_start=1764547200,
            current_period_end=1767225600,
            cancel_at_period_end=True,
            items={"data": [{"quantity": 4}]},
        )

        assert await billing.handle_event(event) == event_type

        (applied,) = writes["apply_stripe_subscription"]
        assert applied == {
            "workspace_id": WORKSPACE_ID,
            "stripe_subscription_id": "sub_1",
            "status": "trialing",
            "trial_ends_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
            "period_start": datetime(2025, 12, 1, tzinfo=timezone.utc),
            "period_end": datetime(2026, 1, 1, tzinfo=timezone.utc),
            "seat_count": 4,
            "cancel_at_period_end": True,
        }

    async def test_unpaid_subscription_is_stored_as_past_due(self, writes):
        await billing.handle_event(_event("customer.subscription.updated", id="sub_1", status="unpaid"))
        (applied,) = writes["apply_stripe_subscription"]
        assert applied["status"] == "past_due"
        assert applied["seat_count"] == 1
        assert applied["trial_ends_at"] is None

    async def test_workspace_id_from_subscription_details(self, writes):
        event = _event(
            "customer.subscription.updated",
            id="sub_1",
            status="active",
            metadata={},
            subscription_details={"metadata": {"workspace_id": str(WORKSPACE_ID)}},
        )
        await billing.handle_event(event)
        assert writes["apply_stripe_subscription"][0]["workspace_id"] == WORKSPACE_ID

    async def test_subscription_deleted_downgrades_to_free(self, writes):
        await billing.handle_event(_event("customer.subscription.deleted", id="sub_1", status="canceled"))
        assert writes == {"downgrade_to_free": [{"workspace_id": WORKSPACE_ID}]}

    async def test_invoice_paid_is_recorded(self, writes):
        await billing.handle_event(
            _event("invoice.paid", id="in_1", amount_paid=2400, currency="eur", invoice_pdf="https://pdf.test/in_1")
        )
        (invoice,) = writes["insert_invoice"]
        assert invoice["status"] == "paid"
        assert invoice["amount_cents"] == 2400
        assert invoice["pdf_url"] == "https://pdf.test/in_1"
        assert "set_status" not in writes

    async def test_payment_failed_sets_past_due(self, writes):
        await billing.handle_event(_event("invoice.payment_failed", id="in_2", amount_due=2400, currency="usd"))

        assert writes["set_status"] == [{"workspace_id": WORKSPACE_ID, "status": "past_due"}]
        (invoice,) = writes["insert_invoice"]
        assert invoice["status"] == "failed"
        assert invoice["amount_cents"] == 2400
        assert invoice["currency"] == "usd"
        assert invoice["pdf_url"] is None

    async def test_events_without_workspace_are_ignored(self, writes):
        event = _event("customer.subscription.updated", id="sub_1", status="active", metadata={})
        assert await billing.handle_event(event) == "customer.subscription.updated"
        assert writes == {}

    async def test_malformed_workspace_id_is_ignored(self, writes):
        event = _event("invoice.paid", id="in_1", metadata={"workspace_id": "not-a-uuid"})
        await billing.handle_event(event)
        assert writes == {}

    async def test_unrelated_event_writes_nothing(self, writes):
        assert await billing.handle_event(_event("customer.created", id="cus_1")) == "customer.created"
        assert writes == {}

    async def test_trial_will_end_emails_admins(self, writes, monkeypatch):
        notify = Recorder()
        monkeypatch.setattr(workspaces_repository, "get_workspace", Recorder({"id": WORKSPACE_ID, "name": "Acme"}))
        monkeypatch.setattr(
            workspaces_repository,
            "list_admin_recipients",
            Recorder([{"email": "ana@example.com", "name": "Ana"}, {"email": "ben@example.com", "name": None}]),
        )
        monkeypatch.setattr(email_queue, "notify_trial_ending", notify)

        await billing.handle_event(_event("customer.subscription.trial_will_end", id="sub_1", trial_end=1767225600))

        assert [kwargs["to"] for _, kwargs in notify.calls] == ["ana@example.com", "ben@example.com"]
        assert notify.calls[0][1]["workspace_name"] == "Acme"
        assert notify.calls[0][1]["trial_end_date"] == "2026-01-01"
        assert writes == {}
