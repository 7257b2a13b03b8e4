"""
Onboarding progress persistence.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from core import db

PROGRESS_COLUMNS = "current_step, steps_completed, started_at, completed_at, skipped_at, updated_at"


async def get_progress(workspace_id: UUID, user_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        f"""
        SELECT {PROGRESS_COLUMNS}
        FROM workspace_onboarding_progress
        WHERE workspace_id = $1
          AND user_id = $2
        """,
        workspace_id,
        user_id,
    )


async def get_invitation_for_user(workspace_id: UUID, user_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT wi.role AS invited_role, u.name AS inviter_name, u.email AS inviter_email
        FROM workspace_invitations wi
        LEFT JOIN users u ON u.id = wi.invited_by
        WHERE wi.workspace_id = $1
          AND lower(wi.email) = (SELECT lower(email) FROM users WHERE id = $2)
        ORDER BY wi.accepted_at DESC NULLS LAST
        LIMIT 1
        """,
        workspace_id,
        user_id,
    )


async def get_profile(user_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        "SELECT id, name, first_name, last_name, email, avatar_url FROM users WHERE id = $1",
        user_id,
    )


async def list_tour_members(workspace_id: UUID, *, limit: int = 10) -> list[dict[str, Any]]:
    return await db.fetch_all(
        """
        SELECT u.id, u.name, u.avatar_url, wm.role
        FROM workspace_members wm
        JOIN users u ON u.id = wm.user_id
        WHERE wm.workspace_id = $1
        ORDER BY wm.role, u.name
        LIMIT $2
        """,
        workspace_id,
        limit,
    )


async def workspace_counts(workspace_id: UUID) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT
          (SELECT count(*) FROM workspace_members WHERE workspace_id = $1) AS member_count,
          (SELECT count(*) FROM categories WHERE workspace_id = $1) AS category_count,
          (SELECT count(*) FROM tasks WHERE workspace_id = $1) AS task_count
        """,
        workspace_id,
    )


async def reset_progress(workspace_id: UUID, user_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        f"""
        INSERT INTO workspace_onboarding_progress (workspace_id, user_id, current_step, steps_completed)
        VALUES ($1, $2, 1, '[]'::jsonb)
        ON CONFLICT (workspace_id, user_id)
        DO UPDATE SET current_step = 1,
                      steps_completed = '[]'::jsonb,
                      skipped_at = NULL,
                      completed_at = NULL,
                      updated_at = now()
        RETURNING {PROGRESS_COLUMNS}
        """,
        workspace_id,
        user_id,
    )


async def record_step(workspace_id: UUID, user_id: int, *, next_step: int, step_name: str) -> dict[str, Any] | None:
    return await db.fetch_one(
        f"""
        INSERT INTO workspace_onboarding_progress (workspace_id, user_id, current_step, steps_completed)
        VALUES ($1, $2, $3, $4::jsonb)
        ON CONFLICT (workspace_id, user_id)
        DO UPDATE SET
          current_step = GREATEST(workspace_onboarding_progress.current_step, $3),
          steps_completed = (
            SELECT coalesce(jsonb_agg(DISTINCT elem), '[]'::jsonb)
            FROM jsonb_array_elements(
              coalesce(workspace_onboarding_progress.steps_completed, '[]'::jsonb) || $4::jsonb
            ) AS elem
          ),
          updated_at = now()
        RETURNING {PROGRESS_COLUMNS}
        """,
        workspace_id,
        user_id,
        next_step,
        [step_name],
    )


async def mark_completed(workspace_id: UUID, user_id: int, *, total_steps: int, steps: list[str]) -> None:
    async with db.transaction() as conn:
        await db.execute(
            """
            INSERT INTO workspace_onboarding_progress
                (workspace_id, user_id, current_step, steps_completed, completed_at)
            VALUES ($1, $2, $3, $4::jsonb, now())
            ON CONFLICT (workspace_id, user_id)
            DO UPDATE SET completed_at = now(),
                          current_step = $3,
                          steps_completed = $4::jsonb,
                          updated_at = now()
            """,
            workspace_id,
            user_id,
            total_steps,
            steps,
            conn=conn,
        )
        await _stamp_member(conn, workspace_id, user_id)


async def mark_skipped(workspace_id: UUID, user_id: int) -> None:
    async with db.transaction() as conn:
        await db.execute(
            """
            INSERT INTO workspace_onboarding_progress (workspace_id, user_id, skipped_at)
            VALUES ($1, $2, now())
            ON CONFLICT (workspace_id, user_id)
            DO UPDATE SET skipped_at = now(), updated_at = now()
            """,
            workspace_id,
            user_id,
            conn=conn,
        )
        await _stamp_member(conn, workspace_id, user_id)


async def _stamp_member(conn, workspace_id: UUID, user_id: int) -> None:
    await db.execute(
        """
        UPDATE workspace_members
        SET onboarding_completed_at = now()
        WHERE workspace_id = $1
          AND user_id = $2
        """,
        workspace_id,
        user_id,
        conn=conn,
    )
