"""
Workspace role checks shared by every workspace-scoped feature.

Roles: admin > member > viewer. Admins and members may edit content;
viewers are read-only.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import HTTPException, status

from . import repository

ROLES = ("admin", "member", "viewer")
EDITOR_ROLES = {"admin", "member"}


async def get_membership(user_id: int, workspace_id: UUID) -> dict | None:
    return await repository.get_membership(user_id, workspace_id)


async def require_member(user_id: int, workspace_id: UUID) -> dict:
    membership = await repository.get_membership(user_id, workspace_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this workspace.",
        )
    return membership


async def require_editor(user_id: int, workspace_id: UUID) -> dict:
    membership = await require_member(user_id, workspace_id)
    if membership["role"] not in EDITOR_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Viewers cannot modify workspace content.",
        )
    return membership


async def require_admin(user_id: int, workspace_id: UUID) -> dict:
    membership = await require_member(user_id, workspace_id)
    if membership["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only workspace admins can perform this action.",
        )
    return membership
