"""
Workspace persistence: workspaces, members, invitations.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

from core import db


async def create_workspace(*, name: str, owner_id: int, conn: asyncpg.Connection | None = None) -> dict[str, Any]:
    row = await db.fetch_one(
        """
        INSERT INTO workspaces (name, owner_id)
        VALUES ($1, $2)
        RETURNING id, name, owner_id, created_at, updated_at
        """,
        name,
        owner_id,
        conn=conn,
    )
    if row is None:
        raise RuntimeError("Failed to create workspace.")
    return row


async def add_member(
    *,
    workspace_id: UUID,
    user_id: int,
    role: str,
    conn: asyncpg.Connection | None = None,
) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        INSERT INTO workspace_members (workspace_id, user_id, role)
        VALUES ($1, $2, $3)
        ON CONFLICT (workspace_id, user_id) DO NOTHING
        RETURNING id, workspace_id, user_id, role, joined_at
        """,
        workspace_id,
        user_id,
        role,
        conn=conn,
    )


async def create_free_subscription(*, workspace_id: UUID, conn: asyncpg.Connection | None = None) -> None:
    await db.execute(
        """
        INSERT INTO subscriptions (workspace_id, plan_id, status)
        VALUES ($1, 'free', 'active')
        ON CONFLICT (workspace_id) DO NOTHING
        """,
        workspace_id,
        conn=conn,
    )


async def get_workspace(workspace_id: UUID) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT w.id, w.name, w.owner_id, w.created_at, w.updated_at,
               u.name AS owner_name,
               (SELECT count(*) FROM workspace_members m WHERE m.workspace_id = w.id) AS member_count
        FROM workspaces w
        LEFT JOIN users u ON u.id = w.owner_id
        WHERE w.id = $1
        """,
        workspace_id,
    )


async def list_for_user(user_id: int) -> list[dict[str, Any]]:
    return await db.fetch_all(
        """
        SELECT w.id, w.name, w.owner_id, w.created_at, w.updated_at,
               wm.role, wm.joined_at, wm.onboarding_completed_at,
               (SELECT count(*) FROM workspace_members m WHERE m.workspace_id = w.id) AS member_count
        FROM workspaces w
        JOIN workspace_members wm ON wm.workspace_id = w.id
        WHERE wm.user_id = $1
        ORDER BY wm.joined_at ASC, w.created_at ASC
        """,
        user_id,
    )


async def update_workspace(workspace_id: UUID, *, name: str) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        UPDATE workspaces
        SET name = $2, updated_at = now()
        WHERE id = $1
        RETURNING id, name, owner_id, created_at, updated_at
        """,
        workspace_id,
        name,
    )


async def delete_workspace(workspace_id: UUID) -> bool:
    row = await db.fetch_one("DELETE FROM workspaces WHERE id = $1 RETURNING id", workspace_id)
    return row is not None


async def count_owned(user_id: int) -> int:
    return int(await db.fetch_val("SELECT count(*) FROM workspaces WHERE owner_id = $1", user_id) or 0)


async def get_membership(user_id: int, workspace_id: UUID) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT wm.id, wm.workspace_id, wm.user_id, wm.role, wm.joined_at,
               wm.onboarding_completed_at, w.owner_id, w.name AS workspace_name
        FROM workspace_members wm
        JOIN workspaces w ON w.id = wm.workspace_id
        WHERE wm.user_id = $1
          AND wm.workspace_id = $2
        """,
        user_id,
        workspace_id,
    )


async def list_members(workspace_id: UUID) -> list[dict[str, Any]]:
    return await db.fetch_all(
        """
        SELECT wm.id, wm.user_id, wm.role, wm.joined_at,
               u.email, u.name, u.first_name, u.last_name, u.avatar_url
        FROM workspace_members wm
        JOIN users u ON u.id = wm.user_id
        WHERE wm.workspace_id = $1
          AND u.deleted_at IS NULL
        ORDER BY wm.joined_at ASC
        """,
        workspace_id,
    )


async def get_member(workspace_id: UUID, member_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT wm.id, wm.user_id, wm.role, u.email, u.name
        FROM workspace_members wm
        JOIN users u ON u.id = wm.user_id
        WHERE wm.workspace_id = $1
          AND wm.id = $2
        """,
        workspace_id,
        member_id,
    )


async def update_member_role(workspace_id: UUID, member_id: int, *, role: str) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        UPDATE workspace_members
        SET role = $3
        WHERE workspace_id = $1
          AND id = $2
        RETURNING id, user_id, role
        """,
        workspace_id,
        member_id,
        role,
    )


async def remove_member(workspace_id: UUID, member_id: int) -> None:
    async with db.transaction() as conn:
        user_id = await db.fetch_val(
            "DELETE FROM workspace_members WHERE workspace_id = $1 AND id = $2 RETURNING user_id",
            workspace_id,
            member_id,
            conn=conn,
        )
        if user_id is None:
            return None
        # Removed members keep no assignments inside the workspace.
        await db.execute(
            """
            DELETE FROM task_assignments ta
            USING tasks t
            WHERE ta.task_id = t.id
              AND t.workspace_id = $1
              AND ta.user_id = $2
            """,
            workspace_id,
            user_id,
            conn=conn,
        )


async def count_members(workspace_id: UUID) -> int:
    return int(
        await db.fetch_val("SELECT count(*) FROM workspace_members WHERE workspace_id = $1", workspace_id) or 0
    )


async def are_members(workspace_id: UUID, user_ids: list[int]) -> bool:
    if not user_ids:
        return True
    found = await db.fetch_val(
        """
        SELECT count(DISTINCT user_id)
        FROM workspace_members
        WHERE workspace_id = $1
          AND user_id = ANY($2::int[])
        """,
        workspace_id,
        list(set(user_ids)),
    )
    return int(found or 0) == len(set(user_ids))


async def is_member_email(workspace_id: UUID, email: str) -> bool:
    row = await db.fetch_one(
        """
        SELECT 1
        FROM workspace_members wm
        JOIN users u ON u.id = wm.user_id
        WHERE wm.workspace_id = $1
          AND lower(u.email) = lower($2)
        """,
        workspace_id,
        email,
    )
    return row is not None


async def get_pending_invitation_for_email(workspace_id: UUID, email: str) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT id, email, role, expires_at
        FROM workspace_invitations
        WHERE workspace_id = $1
          AND lower(email) = lower($2)
          AND accepted_at IS NULL
          AND expires_at > now()
        """,
        workspace_id,
        email,
    )


async def create_invitation(
    *,
    workspace_id: UUID,
    email: str,
    role: str,
    token: str,
    invited_by: int,
    expires_at: datetime,
) -> dict[str, Any]:
    row = await db.fetch_one(
        """
        INSERT INTO workspace_invitations (workspace_id, email, role, token, invited_by, expires_at)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING id, workspace_id, email, role, expires_at, created_at
        """,
        workspace_id,
        email,
        role,
        token,
        invited_by,
        expires_at,
    )
    if row is None:
        raise RuntimeError("Failed to create invitation.")
    return row


async def list_pending_invitations(workspace_id: UUID) -> list[dict[str, Any]]:
    return await db.fetch_all(
        """
        SELECT i.id, i.email, i.role, i.expires_at, i.created_at,
               u.name AS invited_by_name
        FROM workspace_invitations i
        LEFT JOIN users u ON u.id = i.invited_by
        WHERE i.workspace_id = $1
          AND i.accepted_at IS NULL
          AND i.expires_at > now()
        ORDER BY i.created_at DESC
        """,
        workspace_id,
    )


async def count_pending_invitations(workspace_id: UUID) -> int:
    return int(
        await db.fetch_val(
            """
            SELECT count(*)
            FROM workspace_invitations
            WHERE workspace_id = $1
              AND accepted_at IS NULL
              AND expires_at > now()
            """,
            workspace_id,
        )
        or 0
    )


async def delete_invitation(workspace_id: UUID, invitation_id: int) -> bool:
    row = await db.fetch_one(
        """
        DELETE FROM workspace_invitations
        WHERE workspace_id = $1
          AND id = $2
          AND accepted_at IS NULL
        RETURNING id
        """,
        workspace_id,
        invitation_id,
    )
    return row is not None


async def get_invitation_by_token(token: str) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT i.id, i.workspace_id, i.email, i.role, i.expires_at, i.accepted_at,
               w.name AS workspace_name, u.name AS inviter_name
        FROM workspace_invitations i
        JOIN workspaces w ON w.id = i.workspace_id
        LEFT JOIN users u ON u.id = i.invited_by
        WHERE i.token = $1
        """,
        token,
    )


async def accept_invitation(*, invitation_id: int, workspace_id: UUID, user_id: int, role: str) -> dict[str, Any] | None:
    async with db.transaction() as conn:
        member = await add_member(workspace_id=workspace_id, user_id=user_id, role=role, conn=conn)
        if member is None:
            return None
        await db.execute(
            "UPDATE workspace_invitations SET accepted_at = now() WHERE id = $1",
            invitation_id,
            conn=conn,
        )
        return member


async def list_admin_recipients(workspace_id: UUID) -> list[dict[str, Any]]:
    return await db.fetch_all(
        """
        SELECT u.id, u.email, u.name
        FROM workspace_members wm
        JOIN users u ON u.id = wm.user_id
        WHERE wm.workspace_id = $1
          AND wm.role = 'admin'
          AND u.deleted_at IS NULL
        """,
        workspace_id,
    )
