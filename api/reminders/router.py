"""
Reminder endpoints (platform admins only).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import responses, settings

from . import schemas, service

router = APIRouter(
    prefix="/api/reminders",
    dependencies=[Depends(auth_dependencies.require_platform_admin)],
)


@router.post("/run")
async def run_reminders(payload: schemas.ReminderRunRequest | None = None) -> dict:
    payload = payload or schemas.ReminderRunRequest()
    summary = await service.send_reminder_emails(lookahead_days=payload.lookahead_days, dry_run=payload.dry_run)
    return responses.success({"summary": summary}, message="Reminder job completed")


@router.get("/preview")
async def preview_reminders(lookahead_days: int | None = Query(default=None, ge=0, le=30)) -> dict:
    tasks = await service.find_tasks_needing_reminders(lookahead_days)
    groups = service.group_by_assignee(tasks)
    return responses.success(
        {
            "lookaheadDays": service.normalize_lookahead(lookahead_days),
            "totalTasks": len(tasks),
            "recipients": [
                {"email": email, "count": len(items), "taskIds": [t["id"] for t in items]}
                for email, items in groups.items()
            ],
        }
    )


@router.get("/status")
async def reminder_status() -> dict:
    return responses.success(
        {
            "enabled": settings.env_bool("REMINDER_JOB_ENABLED", True),
            "allPlans": service.reminders_for_all_plans(),
            "lookaheadDays": service.default_lookahead_days(),
        }
    )
