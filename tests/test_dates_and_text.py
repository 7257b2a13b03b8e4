"""
Tests for due-date helpers, priorities and input sanitizing.
"""

from datetime import date, datetime, timezone

import pytest

from core import dates, sanitize
from tasks import priority

TODAY = date(2026, 3, 10)


class TestDueDates:
    def test_parse_plain_date(self):
        assert dates.parse_due_date("2026-03-12") == date(2026, 3, 12)

    def test_parse_keeps_calendar_date_of_iso_datetime(self):
        assert dates.parse_due_date("2026-03-12T23:30:00Z") == date(2026, 3, 12)

    def test_blank_is_none(self):
        assert dates.parse_due_date("") is None
        assert dates.parse_due_date(None) is None

    @pytest.mark.parametrize("raw", ["12/03/2026", "tomorrow", "2026-13-01"])
    def test_invalid_dates_raise(self, raw):
        with pytest.raises(ValueError):
            dates.parse_due_date(raw)

    def test_format_accepts_dates_datetimes_and_strings(self):
        assert dates.format_due_date(date(2026, 1, 5)) == "2026-01-05"
        assert dates.format_due_date(datetime(2026, 1, 5, 8, tzinfo=timezone.utc)) == "2026-01-05"
        assert dates.format_due_date("2026-01-05T10:00:00") == "2026-01-05"
        assert dates.format_due_date(None) is None

    @pytest.mark.parametrize(
        "due,label",
        [
            (date(2026, 3, 9), "overdue"),
            (date(2026, 3, 10), "today"),
            (date(2026, 3, 11), "tomorrow"),
            (date(2026, 3, 13), "in 3 days"),
        ],
    )
    def test_due_label(self, due, label):
        assert dates.due_label(due, TODAY) == label

    def test_is_overdue(self):
        assert dates.is_overdue(date(2026, 3, 9), TODAY)
        assert not dates.is_overdue(TODAY, TODAY)
        assert not dates.is_overdue(None, TODAY)


class TestPriority:
    def test_unknown_priority_falls_back_to_medium(self):
        assert priority.normalize_priority("whatever") == "medium"
        assert priority.normalize_priority(None) == "medium"
        assert priority.normalize_priority(" HIGH ") == "high"

    def test_rank_orders_urgent_first(self):
        ranked = sorted(["low", "urgent", "medium", "high"], key=priority.priority_rank, reverse=True)
        assert ranked == ["urgent", "high", "medium", "low"]

    def test_color(self):
        assert priority.priority_color("urgent") == "#dc2626"
        assert priority.priority_color("nope") == priority.PRIORITY_COLORS["medium"]


class TestSanitize:
    def test_strip_tags_removes_markup_and_scripts(self):
        assert sanitize.strip_tags("<b>Ship</b> it<script>alert(1)</script>") == "Ship it"

    def test_strip_tags_keeps_none(self):
        assert sanitize.strip_tags(None) is None

    def test_clean_required_turns_markup_only_into_empty(self):
        assert sanitize.clean_required("<p></p>") == ""

    def test_escape(self):
        assert sanitize.escape('<a href="x">') == "&lt;a href=&quot;x&quot;&gt;"
        assert sanitize.escape(None) == ""
