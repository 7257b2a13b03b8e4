"""
Plan limits.

Limits come from the workspace's active/trialing subscription; anything else
is held to the free plan. A failure while checking a limit is logged and the
request is let through, so a billing outage never locks users out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from core.errors import AppError
from workspaces import repository as workspaces_repository

from . import repository

logger = logging.getLogger(__name__)

FREE_MAX_MEMBERS = 3
FREE_MAX_TASKS = 50
FREE_MAX_WORKSPACES = 1
PRO_MAX_WORKSPACES = 10


@dataclass(frozen=True)
class PlanLimits:
    plan_id: str
    max_members: int | None
    max_tasks: int | None
    features: dict[str, Any] = field(default_factory=dict)


FREE_LIMITS = PlanLimits(plan_id="free", max_members=FREE_MAX_MEMBERS, max_tasks=FREE_MAX_TASKS)


def _plan_label(plan_id: str) -> str:
    return "Free" if plan_id == "free" else plan_id.capitalize()


async def get_plan_limits(workspace_id: UUID) -> PlanLimits:
    row = await repository.get_effective_plan(workspace_id)
    if row is None:
        return FREE_LIMITS
    return PlanLimits(
        plan_id=str(row["plan_id"]),
        max_members=row.get("max_members"),
        max_tasks=row.get("max_tasks"),
        features=row.get("features") or {},
    )


def _limit_error(code: str, message: str, *, limit: int, current: int, plan_id: str) -> AppError:
    return AppError.forbidden(
        message,
        code=code,
        extra={"limit": limit, "current": current, "planId": plan_id},
    )


async def check_task_limit(workspace_id: UUID) -> None:
    try:
        plan = await get_plan_limits(workspace_id)
        if plan.max_tasks is None:
            return None
        current = await repository.count_top_level_tasks(workspace_id)
    except Exception:
        logger.exception("plan_limit_check_failed kind=tasks workspace_id=%s", workspace_id)
        return None

    if current >= plan.max_tasks:
        raise _limit_error(
            "PLAN_LIMIT_TASKS",
            f"Your workspace has reached the {plan.max_tasks}-task limit on the {_plan_label(plan.plan_id)} plan. "
            "Upgrade to Pro for unlimited tasks.",
            limit=plan.max_tasks,
            current=current,
            plan_id=plan.plan_id,
        )


async def check_member_limit(workspace_id: UUID) -> None:
    try:
        plan = await get_plan_limits(workspace_id)
        if plan.max_members is None:
            return None
        members = await workspaces_repository.count_members(workspace_id)
        pending = await workspaces_repository.count_pending_invitations(workspace_id)
    except Exception:
        logger.exception("plan_limit_check_failed kind=members workspace_id=%s", workspace_id)
        return None

    seats = members + pending
    if seats >= plan.max_members:
        raise _limit_error(
            "PLAN_LIMIT_MEMBERS",
            f"Your workspace has reached the {plan.max_members}-member limit on the {_plan_label(plan.plan_id)} plan. "
            "Upgrade to Pro for up to 50 members.",
            limit=plan.max_members,
            current=seats,
            plan_id=plan.plan_id,
        )


async def check_workspace_limit(user_id: int) -> None:
    try:
        owned = await workspaces_repository.count_owned(user_id)
        has_pro = await repository.user_has_pro_workspace(user_id)
    except Exception:
        logger.exception("plan_limit_check_failed kind=workspaces user_id=%s", user_id)
        return None

    limit = PRO_MAX_WORKSPACES if has_pro else FREE_MAX_WORKSPACES
    if owned >= limit:
        message = (
            f"You can own up to {PRO_MAX_WORKSPACES} workspaces."
            if has_pro
            else f"Free plan allows {FREE_MAX_WORKSPACES} workspace. Upgrade to Pro for up to {PRO_MAX_WORKSPACES} workspaces."
        )
        raise _limit_error(
            "PLAN_LIMIT_WORKSPACES",
            message,
            limit=limit,
            current=owned,
            plan_id="pro" if has_pro else "free",
        )
