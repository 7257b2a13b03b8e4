"""
Tests for email template rendering and queue processing helpers.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date

import pytest

from core import db, mailer
from notifications import processor, repository, templates


class TestRenderString:
    def test_values_are_escaped(self):
        html = templates.render_string("Hi {{userName}}", {"userName": "<b>Ana</b>"})
        assert html == "Hi &lt;b&gt;Ana&lt;/b&gt;"

    def test_html_safe_keys_are_inserted_verbatim(self):
        html = templates.render_string("{{taskRows}}", {"taskRows": "<tr><td>x</td></tr>"})
        assert html == "<tr><td>x</td></tr>"

    def test_if_blocks(self):
        template = "A{% if dueDate %} due {{ dueDate }}{% endif %}B"
        assert templates.render_string(template, {"dueDate": "2026-01-01"}) == "A due 2026-01-01B"
        assert templates.render_string(template, {}) == "AB"

    def test_missing_values_render_empty(self):
        assert templates.render_string("[{{missing}}]", {}) == "[]"

    def test_none_values_render_empty(self):
        html = templates.render_string("[{{ userName }}|{{ taskUrl }}]", {"userName": None, "taskUrl": None})
        assert html == "[|]"

    def test_safe_keys_do_not_leak_to_other_values(self):
        html = templates.render_string(
            "{{ taskUrl }} {{ taskTitle }}",
            {"taskUrl": "http://app.test/?a=1&b=2", "taskTitle": "<i>x</i>"},
        )
        assert html == "http://app.test/?a=1&b=2 &lt;i&gt;x&lt;/i&gt;"


class TestRender:
    def test_welcome_template(self):
        html, text = templates.render("welcome.html", {"userName": "Ana", "appUrl": "http://app.test"})
        assert "Hi Ana," in html
        assert 'href="http://app.test"' in html
        assert "<" not in text
        assert "Welcome to Todoria" in text

    def test_unknown_template(self):
        with pytest.raises(templates.TemplateNotFound):
            templates.load_template("nope.html")

    def test_path_traversal_is_refused(self):
        with pytest.raises(templates.TemplateNotFound):
            templates.load_template("../templates.py")


class TestTaskRows:
    def test_empty_list(self):
        assert "No tasks found." in templates.build_task_rows([])

    def test_rows_carry_due_label_and_priority(self):
        rows = templates.build_task_rows(
            [
                {"title": "Write <report>", "due_date": date(2026, 3, 11), "priority": "high"},
                {"title": "Pay invoice", "due_date": date(2026, 3, 10), "priority": None},
            ],
            today=date(2026, 3, 10),
        )
        assert rows.count("<tr>") == 2
        assert "Write &lt;report&gt;" in rows
        assert "Due 2026-03-11 (tomorrow)" in rows
        assert "(today)" in rows
        assert ">medium</span>" in rows


class TestProcessor:
    async def test_deliver_reports_render_failures(self):
        result = await processor.deliver({"template": "missing.html", "to_email": "a@b.co", "subject": "x"})
        assert not result.success
        assert result.error.startswith("render_failed")

    async def test_deliver_renders_then_sends(self, monkeypatch):
        sent = {}

        async def fake_send(**kwargs):
            sent.update(kwargs)
            return mailer.SendResult(success=True, message_id="<1@test>")

        monkeypatch.setattr(mailer, "send_email", fake_send)
        result = await processor.deliver(
            {
                "template": "welcome.html",
                "template_data": {"userName": "Ana"},
                "to_email": "ana@example.com",
                "subject": "Welcome",
            }
        )
        assert result.success
        assert sent["to_email"] == "ana@example.com"
        assert "Hi Ana," in sent["html"]

    def test_stats_hide_skip_fields_for_real_runs(self):
        assert processor.QueueRunStats(processed=2, sent=2).to_dict() == {
            "processed": 2,
            "sent": 2,
            "failed": 0,
            "retried": 0,
        }
        skipped = processor.QueueRunStats(skipped=True, reason="lock_held").to_dict()
        assert skipped["skipped"] is True
        assert skipped["reason"] == "lock_held"

    def test_batch_size_falls_back_on_bad_values(self, monkeypatch):
        monkeypatch.setenv("EMAIL_QUEUE_BATCH_SIZE", "0")
        assert processor.configured_batch_size() == processor.DEFAULT_BATCH_SIZE
        monkeypatch.setenv("EMAIL_QUEUE_BATCH_SIZE", "25")
        assert processor.configured_batch_size() == 25


class FakeConnection:
    def __init__(self):
        self.open_transactions = 0
        self.transactions = 0

    @asynccontextmanager
    async def transaction(self):
        assert self.open_transactions == 0, "transactions must not nest"
        self.transactions += 1
        self.open_transactions += 1
        try:
            yield self
        finally:
            self.open_transactions -= 1


class FakeOutbox:
    """In-memory email_queue rows behind the repository functions."""

    def __init__(self, rows, *, lock_free=True):
        self.rows = {row["id"]: dict(row) for row in rows}
        self.lock_free = lock_free
        self.conn = FakeConnection()
        self.claimed_with = None
        self.unlocked = False

    def install(self, monkeypatch):
        outbox = self

        class Pool:
            @asynccontextmanager
            async def acquire(self):
                yield outbox.conn

        monkeypatch.setattr(db, "pool", lambda: Pool())
        monkeypatch.setattr(repository, "try_lock", self.try_lock)
        monkeypatch.setattr(repository, "unlock", self.unlock)
        monkeypatch.setattr(repository, "claim_pending", self.claim_pending)
        monkeypatch.setattr(repository, "mark_sent", self.mark_sent)
        monkeypatch.setattr(repository, "mark_attempt_failed", self.mark_attempt_failed)
        return self

    async def try_lock(self, conn):
        return self.lock_free

    async def unlock(self, conn):
        self.unlocked = True

    async def claim_pending(self, conn, *, batch_size):
        assert conn.open_transactions == 1
        self.claimed_with = batch_size
        pending = [r for r in self.rows.values() if r["status"] == "pending" and r["attempts"] < r["max_attempts"]]
        return [dict(r) for r in pending[:batch_size]]

    async def mark_sent(self, conn, email_id):
        assert conn.open_transactions == 1
        row = self.rows[email_id]
        row.update(status="sent", attempts=row["attempts"] + 1)

    async def mark_attempt_failed(self, conn, email_id, *, error):
        assert conn.open_transactions == 1
        row = self.rows[email_id]
        row["attempts"] += 1
        row["last_error"] = error
        row["status"] = "failed" if row["attempts"] >= row["max_attempts"] else "pending"
        return row["status"]


def _email(email_id, *, to="a@example.com", attempts=0, max_attempts=3):
    return {
        "id": email_id,
        "to_email": to,
        "subject": "Hello",
        "template": "welcome.html",
        "template_data": {"userName": "Ana"},
        "attempts": attempts,
        "max_attempts": max_attempts,
        "status": "pending",
    }


class TestProcessEmailQueue:
    @pytest.fixture
    def send(self, monkeypatch):
        """Deliveries succeed unless the address starts with "bad"."""
        outbox_conn = {}

        async def fake_deliver(row):
            conn = outbox_conn["conn"]
            assert conn.open_transactions == 0, "SMTP must run outside a transaction"
            if row["to_email"].startswith("bad"):
                return mailer.SendResult(success=False, error="SMTP 550 mailbox unavailable")
            return mailer.SendResult(success=True, message_id=f"<{row['id']}@test>")

        monkeypatch.setattr(processor, "deliver", fake_deliver)
        return outbox_conn

    def _outbox(self, monkeypatch, send, rows, **kwargs):
        outbox = FakeOutbox(rows, **kwargs).install(monkeypatch)
        send["conn"] = outbox.conn
        return outbox

    async def test_successful_send_marks_row_sent(self, monkeypatch, send):
        outbox = self._outbox(monkeypatch, send, [_email(1)])

        stats = await processor.process_email_queue()

        assert stats.to_dict() == {"processed": 1, "sent": 1, "failed": 0, "retried": 0}
        assert outbox.rows[1]["status"] == "sent"
        assert outbox.rows[1]["attempts"] == 1
        assert outbox.unlocked

    async def test_failed_attempt_increments_and_stays_pending(self, monkeypatch, send):
        outbox = self._outbox(monkeypatch, send, [_email(1, to="bad@example.com", attempts=0)])

        stats = await processor.process_email_queue()

        assert stats.retried == 1
        assert stats.failed == 0
        assert outbox.rows[1]["attempts"] == 1
        assert outbox.rows[1]["status"] == "pending"
        assert outbox.rows[1]["last_error"] == "SMTP 550 mailbox unavailable"

    async def test_last_attempt_marks_row_failed(self, monkeypatch, send, caplog):
        outbox = self._outbox(monkeypatch, send, [_email(7, to="bad@example.com", attempts=2, max_attempts=3)])

        with caplog.at_level(logging.ERROR, logger=processor.__name__):
            stats = await processor.process_email_queue()

        assert stats.failed == 1
        assert stats.retried == 0
        assert outbox.rows[7]["attempts"] == 3
        assert outbox.rows[7]["status"] == "failed"
        assert "email_failed id=7 attempts=3" in caplog.text

    async def test_mixed_batch_is_counted_per_outcome(self, monkeypatch, send):
        rows = [
            _email(1),
            _email(2, to="bad@example.com"),
            _email(3, to="bad2@example.com", attempts=2),
            _email(4),
        ]
        outbox = self._outbox(monkeypatch, send, rows)

        stats = await processor.process_email_queue()

        assert stats.to_dict() == {"processed": 4, "sent": 2, "failed": 1, "retried": 1}
        # One claim transaction plus one per recorded outcome.
        assert outbox.conn.transactions == 5

    async def test_batch_size_limits_the_claim(self, monkeypatch, send):
        outbox = self._outbox(monkeypatch, send, [_email(i) for i in range(1, 6)])

        stats = await processor.process_email_queue(batch_size=2)

        assert outbox.claimed_with == 2
        assert stats.processed == 2
        assert [r["status"] for r in outbox.rows.values()] == ["sent", "sent", "pending", "pending", "pending"]

    async def test_configured_batch_size_is_the_default(self, monkeypatch, send):
        monkeypatch.setenv("EMAIL_QUEUE_BATCH_SIZE", "3")
        outbox = self._outbox(monkeypatch, send, [])

        stats = await processor.process_email_queue()

        assert outbox.claimed_with == 3
        assert stats.processed == 0

    async def test_skipped_when_another_worker_holds_the_lock(self, monkeypatch, send):
        outbox = self._outbox(monkeypatch, send, [_email(1)], lock_free=False)

        stats = await processor.process_email_queue()

        assert stats.to_dict() == {"processed": 0, "sent": 0, "failed": 0, "retried": 0, "skipped": True, "reason": "lock_held"}
        assert outbox.claimed_with is None
        assert outbox.rows[1]["status"] == "pending"
        assert not outbox.unlocked

    async def test_lock_is_released_when_recording_fails(self, monkeypatch, send):
        outbox = self._outbox(monkeypatch, send, [_email(1)])

        async def broken_mark_sent(conn, email_id):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(repository, "mark_sent", broken_mark_sent)
        with pytest.raises(RuntimeError):
            await processor.process_email_queue()
        assert outbox.unlocked
