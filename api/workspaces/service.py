"""
Workspace business logic: workspaces, membership and invitations.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import HTTPException, status

from activity import service as activity
from auth import security
from billing import limits
from core import db, sanitize
from notifications import queue as email_queue

from . import access, repository

logger = logging.getLogger(__name__)

INVITATION_TTL_DAYS = 7


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _workspace_view(row: dict, *, role: str | None = None) -> dict:
    view = {
        "id": str(row["id"]),
        "name": row["name"],
        "ownerId": row.get("owner_id"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }
    if "member_count" in row:
        view["memberCount"] = int(row["member_count"] or 0)
    if row.get("owner_name") is not None:
        view["ownerName"] = row["owner_name"]
    if role or row.get("role"):
        view["role"] = role or row.get("role")
    return view


def _member_view(row: dict) -> dict:
    return {
        "id": int(row["id"]),
        "userId": int(row["user_id"]),
        "role": row["role"],
        "email": row.get("email"),
        "name": row.get("name"),
        "firstName": row.get("first_name"),
        "lastName": row.get("last_name"),
        "avatarUrl": row.get("avatar_url"),
        "joinedAt": row.get("joined_at"),
    }


def _validate_role(role: str) -> str:
    value = (role or "").strip().lower()
    if value not in access.ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid role. Must be one of: {', '.join(access.ROLES)}.",
        )
    return value


def _clean_name(name: str) -> str:
    cleaned = sanitize.clean_required(name)
    if not cleaned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Workspace name is required.")
    return cleaned


async def list_my_workspaces(*, user_id: int) -> list[dict]:
    rows = await repository.list_for_user(user_id)
    return [_workspace_view(r) for r in rows]


async def get_workspace(workspace_id: UUID, *, user_id: int) -> dict:
    membership = await access.require_member(user_id, workspace_id)
    row = await repository.get_workspace(workspace_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found.")
    return _workspace_view(row, role=membership["role"])


async def create_workspace(name: str, *, user_id: int) -> dict:
    name = _clean_name(name)
    await limits.check_workspace_limit(user_id)

    async with db.transaction() as conn:
        row = await repository.create_workspace(name=name, owner_id=user_id, conn=conn)
        await repository.add_member(workspace_id=row["id"], user_id=user_id, role="admin", conn=conn)
        await repository.create_free_subscription(workspace_id=row["id"], conn=conn)

    logger.info("workspace_created workspace_id=%s owner_id=%s", row["id"], user_id)
    await activity.log_activity(row["id"], user_id, "created", "workspace", row["id"], {"name": name})
    return _workspace_view({**row, "member_count": 1}, role="admin")


async def update_workspace(workspace_id: UUID, name: str, *, user_id: int) -> dict:
    await access.require_admin(user_id, workspace_id)
    name = _clean_name(name)
    row = await repository.update_workspace(workspace_id, name=name)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found.")
    await activity.log_activity(workspace_id, user_id, "updated", "workspace", workspace_id, {"name": name})
    return _workspace_view(row, role="admin")


async def delete_workspace(workspace_id: UUID, *, user_id: int) -> None:
    membership = await access.require_member(user_id, workspace_id)
    if int(membership["owner_id"]) != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the workspace owner can delete the workspace.",
        )
    if not await repository.delete_workspace(workspace_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found.")
    logger.info("workspace_deleted workspace_id=%s user_id=%s", workspace_id, user_id)


async def list_members(workspace_id: UUID, *, user_id: int) -> list[dict]:
    await access.require_member(user_id, workspace_id)
    return [_member_view(r) for r in await repository.list_members(workspace_id)]


async def list_workspace_users(workspace_id: UUID, *, user_id: int) -> list[dict]:
    """
    Compact user list for assignee pickers.
    """
    await access.require_member(user_id, workspace_id)
    return [
        {"id": int(r["user_id"]), "name": r.get("name"), "email": r.get("email"), "avatarUrl": r.get("avatar_url")}
        for r in await repository.list_members(workspace_id)
    ]


async def update_member_role(workspace_id: UUID, member_id: int, role: str, *, user_id: int) -> dict:
    membership = await access.require_admin(user_id, workspace_id)
    role = _validate_role(role)

    member = await repository.get_member(workspace_id, member_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found.")
    if int(member["user_id"]) == int(membership["owner_id"]) and role != "admin":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The workspace owner must remain an admin.",
        )

    updated = await repository.update_member_role(workspace_id, member_id, role=role)
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found.")
    await activity.log_activity(
        workspace_id,
        user_id,
        "role_changed",
        "member",
        member_id,
        {"userId": int(member["user_id"]), "from": member["role"], "to": role},
    )
    return {"id": int(updated["id"]), "userId": int(updated["user_id"]), "role": updated["role"]}


async def remove_member(workspace_id: UUID, member_id: int, *, user_id: int) -> None:
    membership = await access.require_member(user_id, workspace_id)
    member = await repository.get_member(workspace_id, member_id)
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found.")

    is_self = int(member["user_id"]) == user_id
    if not is_self and membership["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only workspace admins can remove members.",
        )
    if int(member["user_id"]) == int(membership["owner_id"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The workspace owner cannot be removed.",
        )

    await repository.remove_member(workspace_id, member_id)
    await activity.log_activity(
        workspace_id,
        user_id,
        "left" if is_self else "removed",
        "member",
        member_id,
        {"userId": int(member["user_id"]), "email": member.get("email")},
    )


async def invite(workspace_id: UUID, email: str, role: str, *, user: dict) -> dict:
    user_id = int(user["id"])
    membership = await access.require_admin(user_id, workspace_id)

    email = (email or "").strip().lower()
    if not security.is_valid_email(email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please provide a valid email address.")
    role = _validate_role(role)

    if await repository.is_member_email(workspace_id, email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This user is already a member of the workspace.",
        )
    if await repository.get_pending_invitation_for_email(workspace_id, email) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An invitation has already been sent to this email.",
        )

    await limits.check_member_limit(workspace_id)

    token = secrets.token_hex(32)
    invitation = await repository.create_invitation(
        workspace_id=workspace_id,
        email=email,
        role=role,
        token=token,
        invited_by=user_id,
        expires_at=_utc_now() + timedelta(days=INVITATION_TTL_DAYS),
    )

    await email_queue.notify_workspace_invite(
        to=email,
        inviter_name=user.get("name"),
        workspace_name=str(membership.get("workspace_name") or "a workspace"),
        token=token,
    )
    await activity.log_activity(workspace_id, user_id, "invited", "invitation", invitation["id"], {"email": email, "role": role})
    logger.info("invitation_created workspace_id=%s invitation_id=%s", workspace_id, invitation["id"])

    return {
        "id": int(invitation["id"]),
        "email": invitation["email"],
        "role": invitation["role"],
        "expiresAt": invitation["expires_at"],
        "createdAt": invitation["created_at"],
    }


async def list_invitations(workspace_id: UUID, *, user_id: int) -> list[dict]:
    await access.require_admin(user_id, workspace_id)
    return [
        {
            "id": int(r["id"]),
            "email": r["email"],
            "role": r["role"],
            "invitedByName": r.get("invited_by_name"),
            "expiresAt": r["expires_at"],
            "createdAt": r["created_at"],
        }
        for r in await repository.list_pending_invitations(workspace_id)
    ]


async def cancel_invitation(workspace_id: UUID, invitation_id: int, *, user_id: int) -> None:
    await access.require_admin(user_id, workspace_id)
    if not await repository.delete_invitation(workspace_id, invitation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found.")
    await activity.log_activity(workspace_id, user_id, "canceled", "invitation", invitation_id)


async def _usable_invitation(token: str) -> dict:
    invitation = await repository.get_invitation_by_token((token or "").strip())
    if invitation is None or invitation.get("accepted_at") is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found or already used.")
    expires_at = invitation.get("expires_at")
    if not isinstance(expires_at, datetime) or expires_at <= _utc_now():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation has expired.")
    return invitation


async def get_invite_info(token: str) -> dict:
    invitation = await _usable_invitation(token)
    return {
        "workspaceName": invitation["workspace_name"],
        "inviterName": invitation.get("inviter_name"),
        "email": invitation["email"],
        "role": invitation["role"],
        "expiresAt": invitation["expires_at"],
    }


async def accept_invitation(token: str, *, user: dict) -> dict:
    invitation = await _usable_invitation(token)
    user_id = int(user["id"])

    if str(invitation["email"]).lower() != str(user["email"]).lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This invitation was sent to a different email address.",
        )
    if await repository.get_membership(user_id, invitation["workspace_id"]) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You are already a member of this workspace.",
        )

    member = await repository.accept_invitation(
        invitation_id=int(invitation["id"]),
        workspace_id=invitation["workspace_id"],
        user_id=user_id,
        role=str(invitation["role"]),
    )
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You are already a member of this workspace.",
        )

    await activity.log_activity(invitation["workspace_id"], user_id, "joined", "member", member["id"], {"role": member["role"]})
    logger.info("invitation_accepted workspace_id=%s user_id=%s", invitation["workspace_id"], user_id)
    return {
        "workspace": {"id": str(invitation["workspace_id"]), "name": invitation["workspace_name"]},
        "role": member["role"],
    }
