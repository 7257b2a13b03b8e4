"""
Platform admin endpoints.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from auth import dependencies as auth_dependencies
from core import responses
from notifications import processor

from . import repository

router = APIRouter(
    prefix="/api/admin",
    dependencies=[Depends(auth_dependencies.require_platform_admin)],
)


def _ints(row: dict, mapping: dict[str, str]) -> dict[str, int]:
    return {out: int(row.get(column) or 0) for out, column in mapping.items()}


@router.get("/stats")
async def stats() -> dict:
    users, workspaces, tasks, subscriptions, emails = await asyncio.gather(
        repository.user_counts(),
        repository.workspace_counts(),
        repository.task_counts(),
        repository.subscription_counts(),
        processor.queue_stats(),
    )
    return responses.success(
        {
            "users": _ints(users, {"total": "total", "new30d": "new_30d", "new7d": "new_7d", "verified": "verified"}),
            "workspaces": _ints(workspaces, {"total": "total"}),
            "tasks": _ints(tasks, {"total": "total", "completed": "completed", "new7d": "new_7d"}),
            "subscriptions": _ints(subscriptions, {"total": "total", "active": "active", "pro": "pro"}),
            "emailQueue": emails,
        }
    )
