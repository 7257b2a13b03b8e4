"""
Date helpers shared by tasks, reminders and exports.

Due dates are calendar dates; the API always exchanges them as YYYY-MM-DD.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

DATE_FORMAT = "%Y-%m-%d"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return utc_now().date()


def format_due_date(value: date | datetime | str | None) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().strftime(DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    parsed = parse_due_date(str(value))
    return parsed.strftime(DATE_FORMAT) if parsed else None


def parse_due_date(text: str | None) -> date | None:
    """
    Accepts "YYYY-MM-DD" or an ISO datetime ("2024-05-01T10:00:00Z") and keeps
    only the calendar date. Raises ValueError for anything else.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    if len(raw) >= 10 and raw[4] == "-" and raw[7] == "-":
        return datetime.strptime(raw[:10], DATE_FORMAT).date()
    raise ValueError(f"Invalid date: {raw!r}")


def days_until(due: date, today: date | None = None) -> int:
    return (due - (today or today_utc())).days


def is_overdue(due: date | None, today: date | None = None) -> bool:
    if due is None:
        return False
    return days_until(due, today) < 0


def due_label(due: date, today: date | None = None) -> str:
    days = days_until(due, today)
    if days < 0:
        return "overdue"
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"
