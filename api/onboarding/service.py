"""
Workspace onboarding flow for newly joined members.

Only membership and the workspace row are required to build the status
view; the remaining pieces are decoration and fall back to empty values
when their queries fail.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable
from uuid import UUID

from fastapi import HTTPException, status

from workspaces import access
from workspaces import repository as workspaces_repository

from . import repository

logger = logging.getLogger(__name__)

ONBOARDING_STEPS = ["welcome", "profile", "tour", "roles", "getting-started"]
TOTAL_STEPS = len(ONBOARDING_STEPS)


async def _optional(label: str, call: Awaitable[Any], default: Any) -> Any:
    try:
        result = await call
    except Exception as exc:
        logger.warning("onboarding_lookup_failed part=%s error=%s", label, exc)
        return default
    return default if result is None else result


def resolve_step(step: int | None, step_name: str | None) -> tuple[int, str]:
    if not step and not step_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="step number or step_name is required.",
        )
    number = step or (ONBOARDING_STEPS.index(step_name) + 1 if step_name in ONBOARDING_STEPS else 0)
    if number < 1 or number > TOTAL_STEPS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid step. Must be between 1 and {TOTAL_STEPS}.",
        )
    return number, step_name or ONBOARDING_STEPS[number - 1]


def _progress_view(row: dict | None) -> dict:
    row = row or {}
    return {
        "currentStep": min(int(row.get("current_step") or 1), TOTAL_STEPS),
        "stepsCompleted": list(row.get("steps_completed") or []),
        "totalSteps": TOTAL_STEPS,
    }


async def get_status(workspace_id: UUID, *, user_id: int) -> dict:
    membership = await access.require_member(user_id, workspace_id)
    workspace = await workspaces_repository.get_workspace(workspace_id)
    if workspace is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found.")

    invitation = await _optional("invitation", repository.get_invitation_for_user(workspace_id, user_id), None)
    progress = await _optional("progress", repository.get_progress(workspace_id, user_id), {})
    profile = await _optional("profile", repository.get_profile(user_id), None)
    members = await _optional("members", repository.list_tour_members(workspace_id), [])
    counts = await _optional("counts", repository.workspace_counts(workspace_id), {})

    completed_at = progress.get("completed_at") or membership.get("onboarding_completed_at")
    return {
        "onboarding": {
            "isCompleted": completed_at is not None,
            "isSkipped": progress.get("skipped_at") is not None,
            "currentStep": int(progress.get("current_step") or 1),
            "stepsCompleted": list(progress.get("steps_completed") or []),
            "totalSteps": TOTAL_STEPS,
            "steps": ONBOARDING_STEPS,
            "completedAt": completed_at,
            "skippedAt": progress.get("skipped_at"),
        },
        "workspace": {
            "id": str(workspace_id),
            "name": workspace["name"],
            "ownerName": workspace.get("owner_name"),
            "memberCount": int(counts.get("member_count") or 0),
            "categoryCount": int(counts.get("category_count") or 0),
            "taskCount": int(counts.get("task_count") or 0),
        },
        "invitation": (
            {
                "inviterName": invitation.get("inviter_name"),
                "inviterEmail": invitation.get("inviter_email"),
                "role": invitation.get("invited_role"),
            }
            if invitation
            else None
        ),
        "userRole": membership["role"],
        "user": (
            {
                "id": profile["id"],
                "name": profile.get("name"),
                "firstName": profile.get("first_name"),
                "lastName": profile.get("last_name"),
                "email": profile.get("email"),
                "avatarUrl": profile.get("avatar_url"),
            }
            if profile
            else None
        ),
        "members": [
            {"id": m["id"], "name": m.get("name"), "avatarUrl": m.get("avatar_url"), "role": m["role"]}
            for m in members
        ],
    }


async def start(workspace_id: UUID, *, user_id: int) -> dict:
    await access.require_member(user_id, workspace_id)
    row = await repository.reset_progress(workspace_id, user_id)
    return _progress_view(row)


async def update_progress(workspace_id: UUID, *, user_id: int, step: int | None, step_name: str | None) -> tuple[str, dict]:
    number, name = resolve_step(step, step_name)
    await access.require_member(user_id, workspace_id)
    row = await repository.record_step(workspace_id, user_id, next_step=number + 1, step_name=name)
    return name, _progress_view(row)


async def complete(workspace_id: UUID, *, user_id: int) -> None:
    await access.require_member(user_id, workspace_id)
    await repository.mark_completed(workspace_id, user_id, total_steps=TOTAL_STEPS, steps=list(ONBOARDING_STEPS))
    logger.info("onboarding_completed workspace_id=%s user_id=%s", workspace_id, user_id)


async def skip(workspace_id: UUID, *, user_id: int) -> None:
    await access.require_member(user_id, workspace_id)
    await repository.mark_skipped(workspace_id, user_id)
    logger.info("onboarding_skipped workspace_id=%s user_id=%s", workspace_id, user_id)
