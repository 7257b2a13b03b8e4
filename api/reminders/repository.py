"""
Reminder candidate lookup and the per-day reminder log.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from core import db


async def find_due_assignments(*, lookahead_days: int, all_plans: bool) -> list[dict[str, Any]]:
    """
    One row per (task, assignee) for open tasks due in [today, today + N],
    skipping pairs already reminded today.
    """
    return await db.fetch_all(
        """
        SELECT t.id, t.title, t.description, t.due_date, t.priority, t.status,
               t.workspace_id,
               u.id AS assignee_id, u.email AS assignee_email, u.name AS assignee_name
        FROM tasks t
        JOIN task_assignments ta ON ta.task_id = t.id
        JOIN users u ON u.id = ta.user_id
        LEFT JOIN subscriptions s ON s.workspace_id = t.workspace_id
        LEFT JOIN plans p ON p.id = coalesce(s.plan_id, 'free')
        WHERE t.status <> 'completed'
          AND t.completed_at IS NULL
          AND t.due_date IS NOT NULL
          AND t.due_date BETWEEN CURRENT_DATE AND CURRENT_DATE + $1::int
          AND u.deleted_at IS NULL
          AND coalesce(u.email, '') <> ''
          AND u.email_notifications_enabled
          AND (
            $2::boolean
            OR coalesce((p.features ->> 'email_reminders')::boolean, false)
          )
          AND NOT EXISTS (
            SELECT 1 FROM reminder_log rl
            WHERE rl.task_id = t.id
              AND rl.user_id = u.id
              AND rl.reminded_on = CURRENT_DATE
          )
        ORDER BY t.due_date ASC, t.id ASC
        """,
        lookahead_days,
        all_plans,
    )


async def log_reminders(pairs: list[tuple[int, int]], *, reminded_on: date) -> None:
    if not pairs:
        return None
    async with db.transaction() as conn:
        await conn.executemany(
            """
            INSERT INTO reminder_log (task_id, user_id, reminded_on)
            VALUES ($1, $2, $3)
            ON CONFLICT (task_id, user_id, reminded_on) DO NOTHING
            """,
            [(task_id, user_id, reminded_on) for task_id, user_id in pairs],
        )
