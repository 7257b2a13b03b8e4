"""
Due-date reminders.

Finds open tasks due inside the lookahead window and queues one email per
assignee: the single-task template for one task, the digest template for
several. Each (task, assignee) pair is reminded at most once per day.
"""

from __future__ import annotations

import logging
from typing import Any

from core import dates, settings
from notifications import queue as email_queue
from notifications import templates

from . import repository

logger = logging.getLogger(__name__)


def default_lookahead_days() -> int:
    return max(settings.env_int("REMINDER_LOOKAHEAD_DAYS", 2), 0)


def normalize_lookahead(value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default_lookahead_days()
    return parsed if parsed >= 0 else default_lookahead_days()


def reminders_for_all_plans() -> bool:
    return settings.env_bool("REMINDER_ALL_PLANS", False)


async def find_tasks_needing_reminders(lookahead_days: int | None = None) -> list[dict]:
    lookahead = normalize_lookahead(lookahead_days)
    rows = await repository.find_due_assignments(lookahead_days=lookahead, all_plans=reminders_for_all_plans())
    return [
        {
            "id": int(r["id"]),
            "title": r["title"],
            "description": r.get("description"),
            "due_date": r["due_date"],
            "priority": r.get("priority") or "medium",
            "status": r.get("status"),
            "assignee_id": int(r["assignee_id"]),
            "assignee_email": r["assignee_email"],
            "assignee_name": r.get("assignee_name"),
        }
        for r in rows
    ]


def group_by_assignee(tasks: list[dict]) -> dict[str, list[dict]]:
    groups: dict[str, list[dict]] = {}
    for task in tasks:
        groups.setdefault(task["assignee_email"], []).append(task)
    return groups


async def _queue_for(email: str, user_tasks: list[dict]) -> int | None:
    name = user_tasks[0].get("assignee_name")
    if len(user_tasks) == 1:
        task = user_tasks[0]
        return await email_queue.notify_task_reminder(
            to=email,
            user_name=name,
            task_id=task["id"],
            task_name=task["title"],
            task_description=task.get("description"),
            due_date=dates.format_due_date(task["due_date"]) or "",
            due_label=dates.due_label(task["due_date"]),
            priority=task.get("priority"),
        )
    return await email_queue.notify_multiple_tasks_reminder(
        to=email,
        user_name=name,
        task_count=len(user_tasks),
        task_rows=templates.build_task_rows(user_tasks),
    )


async def send_reminder_emails(*, lookahead_days: int | None = None, dry_run: bool = False) -> dict:
    lookahead = normalize_lookahead(lookahead_days)
    tasks = await find_tasks_needing_reminders(lookahead)
    if not tasks:
        return {
            "sent": 0,
            "failed": 0,
            "totalTasks": 0,
            "lookaheadDays": lookahead,
            "results": [],
            "message": "No tasks need reminders in the configured window.",
        }

    sent = failed = 0
    results: list[dict] = []
    reminded: list[tuple[int, int]] = []

    for email, user_tasks in group_by_assignee(tasks).items():
        if dry_run:
            results.append({"email": email, "count": len(user_tasks), "success": True, "dryRun": True})
            continue

        email_id = await _queue_for(email, user_tasks)
        if email_id is None:
            failed += 1
            results.append({"email": email, "count": len(user_tasks), "success": False, "error": "queue_failed"})
            continue

        sent += 1
        reminded.extend((t["id"], t["assignee_id"]) for t in user_tasks)
        results.append({"email": email, "count": len(user_tasks), "success": True, "emailId": email_id})

    if reminded:
        await repository.log_reminders(reminded, reminded_on=dates.today_utc())

    return {
        "sent": sent,
        "failed": failed,
        "totalTasks": len(tasks),
        "lookaheadDays": lookahead,
        "results": results,
    }


async def run_reminder_job(context: str = "manual", *, dry_run: bool | None = None) -> dict | None:
    """
    Scheduler/CLI entry point: logs a summary and never raises.
    """
    if dry_run is None:
        dry_run = settings.env_bool("REMINDER_DRY_RUN", False)
    try:
        summary = await send_reminder_emails(dry_run=dry_run)
    except Exception:
        logger.exception("reminder_job_failed context=%s", context)
        return None
    logger.info(
        "reminder_job_done context=%s sent=%s failed=%s total_tasks=%s lookahead=%s dry_run=%s",
        context,
        summary["sent"],
        summary["failed"],
        summary["totalTasks"],
        summary["lookaheadDays"],
        dry_run,
    )
    return summary
