"""
Email outbox writers.

Callers enqueue a row in `email_queue`; the queue processor job renders and
delivers it later. The `notify_*` helpers are best-effort: a failure to
enqueue is logged and never fails the request that triggered it.
"""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from core import settings
from tasks import priority as task_priority

from . import repository

logger = logging.getLogger(__name__)


async def queue_email(
    *,
    to: str,
    subject: str,
    template: str,
    template_data: dict[str, Any] | None = None,
    max_attempts: int = 3,
    conn: asyncpg.Connection | None = None,
) -> int:
    email_id = await repository.insert_email(
        to_email=to,
        subject=subject,
        template=template,
        template_data=template_data or {},
        max_attempts=max_attempts,
        conn=conn,
    )
    logger.info("email_queued id=%s template=%s", email_id, template)
    return email_id


async def _best_effort(**kwargs: Any) -> int | None:
    try:
        return await queue_email(**kwargs)
    except Exception:
        logger.exception("email_queue_failed template=%s", kwargs.get("template"))
        return None


def task_url(task_id: int) -> str:
    return f"{settings.client_url()}/tasks?taskId={task_id}"


async def notify_task_reminder(
    *,
    to: str,
    user_name: str | None,
    task_id: int,
    task_name: str,
    due_date: str,
    due_label: str,
    task_description: str | None = None,
    priority: str | None = None,
) -> int | None:
    level = task_priority.normalize_priority(priority)
    return await _best_effort(
        to=to,
        subject=f'Reminder: "{task_name}" is due soon',
        template="task_reminder.html",
        template_data={
            "userName": user_name or "there",
            "taskName": task_name,
            "taskDescription": task_description,
            "dueDate": due_date,
            "dueLabel": due_label,
            "priority": level,
            "priorityColor": task_priority.priority_color(level),
            "taskUrl": task_url(task_id),
        },
    )


async def notify_multiple_tasks_reminder(
    *,
    to: str,
    user_name: str | None,
    task_count: int,
    task_rows: str,
) -> int | None:
    plural = task_count != 1
    return await _best_effort(
        to=to,
        subject=f"Reminder: You have {task_count} task{'s' if plural else ''} due soon",
        template="multiple_tasks_reminder.html",
        template_data={
            "userName": user_name or "there",
            "taskCount": task_count,
            "taskPlural": "s" if plural else "",
            "taskVerb": "are" if plural else "is",
            "taskRows": task_rows,
        },
    )


async def notify_task_assignment(
    *,
    to: str,
    user_name: str | None,
    task_id: int,
    task_title: str,
    assigned_by_name: str | None,
    task_description: str | None = None,
    due_date: str | None = None,
    priority: str | None = None,
) -> int | None:
    level = task_priority.normalize_priority(priority)
    return await _best_effort(
        to=to,
        subject=f'New Task Assigned: "{task_title}"',
        template="task_assignment.html",
        template_data={
            "userName": user_name or "there",
            "taskTitle": task_title,
            "taskDescription": task_description,
            "assignedByName": assigned_by_name or "A team member",
            "dueDate": due_date,
            "priority": level,
            "priorityColor": task_priority.priority_color(level),
            "taskUrl": task_url(task_id),
        },
    )


async def notify_workspace_invite(
    *,
    to: str,
    inviter_name: str | None,
    workspace_name: str,
    token: str,
) -> int | None:
    return await _best_effort(
        to=to,
        subject=f"You're invited to join {workspace_name} on Todoria",
        template="workspace_invite.html",
        template_data={
            "inviterName": inviter_name or "A team member",
            "workspaceName": workspace_name,
            "inviteUrl": f"{settings.client_url()}/invite/{token}",
        },
    )


async def notify_welcome(*, to: str, user_name: str | None) -> int | None:
    return await _best_effort(
        to=to,
        subject="Welcome to Todoria!",
        template="welcome.html",
        template_data={"userName": user_name or "there", "appUrl": settings.client_url()},
    )


async def notify_email_verification(*, to: str, user_name: str | None, token: str) -> int | None:
    return await _best_effort(
        to=to,
        subject="Verify your email - Todoria",
        template="email_verification.html",
        template_data={
            "userName": user_name or "there",
            "verificationUrl": f"{settings.client_url()}/verify-email?token={token}",
        },
    )


async def notify_password_reset(*, to: str, user_name: str | None, token: str) -> int | None:
    return await _best_effort(
        to=to,
        subject="Reset your password - Todoria",
        template="password_reset.html",
        template_data={
            "userName": user_name or "there",
            "resetUrl": f"{settings.client_url()}/reset-password?token={token}",
        },
    )


async def notify_trial_ending(
    *,
    to: str,
    user_name: str | None,
    workspace_name: str,
    trial_end_date: str,
) -> int | None:
    return await _best_effort(
        to=to,
        subject="Your Todoria Pro trial ends soon",
        template="trial_ending.html",
        template_data={
            "userName": user_name or "there",
            "workspaceName": workspace_name,
            "trialEndDate": trial_end_date,
            "billingUrl": f"{settings.client_url()}/billing",
        },
    )
