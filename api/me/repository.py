"""
Current-user persistence: profile, preferences, account deletion, my tasks.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from core import db

PROFILE_COLUMNS = """
    id, email, name, first_name, last_name, avatar_url, role, language, timezone,
    email_notifications_enabled, email_digest_mode, email_verified, created_at, updated_at
"""

MY_TASK_SORTS = {
    "due_date": "t.due_date",
    "created_at": "t.created_at",
    "title": "t.title",
    "priority": "t.priority",
}


async def get_profile(user_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        f"SELECT {PROFILE_COLUMNS} FROM users WHERE id = $1 AND deleted_at IS NULL",
        user_id,
    )


async def update_user(user_id: int, fields: dict[str, Any]) -> dict[str, Any] | None:
    # Keys come from the service's allow-list, never from the request.
    assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(fields, start=2))
    return await db.fetch_one(
        f"""
        UPDATE users
        SET {assignments}, updated_at = now()
        WHERE id = $1
          AND deleted_at IS NULL
        RETURNING {PROFILE_COLUMNS}
        """,
        user_id,
        *fields.values(),
    )


async def soft_delete_user(user_id: int) -> None:
    async with db.transaction() as conn:
        await db.execute(
            """
            UPDATE users
            SET deleted_at = now(),
                is_active = FALSE,
                email = 'deleted-' || id || '@deleted.invalid',
                name = 'Deleted User',
                first_name = NULL,
                last_name = NULL,
                avatar_url = NULL,
                email_notifications_enabled = FALSE,
                updated_at = now()
            WHERE id = $1
            """,
            user_id,
            conn=conn,
        )
        await db.execute("DELETE FROM task_assignments WHERE user_id = $1", user_id, conn=conn)
        await db.execute("DELETE FROM workspace_members WHERE user_id = $1", user_id, conn=conn)
        await db.execute(
            "UPDATE refresh_tokens SET revoked_at = now() WHERE user_id = $1 AND revoked_at IS NULL",
            user_id,
            conn=conn,
        )


async def count_owned_shared_workspaces(user_id: int) -> int:
    return int(
        await db.fetch_val(
            """
            SELECT count(*)
            FROM workspaces w
            WHERE w.owner_id = $1
              AND EXISTS (
                SELECT 1 FROM workspace_members m
                WHERE m.workspace_id = w.id AND m.user_id <> $1
              )
            """,
            user_id,
        )
        or 0
    )


async def delete_solo_workspaces(user_id: int) -> None:
    await db.execute(
        """
        DELETE FROM workspaces w
        WHERE w.owner_id = $1
          AND NOT EXISTS (
            SELECT 1 FROM workspace_members m
            WHERE m.workspace_id = w.id AND m.user_id <> $1
          )
        """,
        user_id,
    )


async def list_my_tasks(
    user_id: int,
    *,
    workspace_id: UUID | None = None,
    status: str | None = None,
    sort: str = "due_date",
    descending: bool = False,
    limit: int | None = None,
    offset: int = 0,
) -> list[dict[str, Any]]:
    clauses = ["ta.user_id = $1", "wm.user_id IS NOT NULL"]
    params: list[Any] = [user_id]
    if workspace_id is not None:
        params.append(workspace_id)
        clauses.append(f"t.workspace_id = ${len(params)}")
    if status == "open":
        clauses.append("t.status <> 'completed'")
    elif status:
        params.append(status)
        clauses.append(f"t.status = ${len(params)}")

    column = MY_TASK_SORTS.get(sort, MY_TASK_SORTS["due_date"])
    direction = "DESC" if descending else "ASC"
    order = f"{column} IS NULL, {column} {direction}" if column == "t.due_date" else f"{column} {direction}"

    sql = f"""
        SELECT t.id, t.title, t.description, t.status, t.priority, t.due_date,
               t.completed_at, t.category_id, t.workspace_id, t.created_at, t.updated_at,
               c.name AS category_name, c.color AS category_color,
               w.name AS workspace_name
        FROM tasks t
        JOIN task_assignments ta ON ta.task_id = t.id
        JOIN workspaces w ON w.id = t.workspace_id
        LEFT JOIN workspace_members wm ON wm.workspace_id = t.workspace_id AND wm.user_id = ta.user_id
        LEFT JOIN categories c ON c.id = t.category_id
        WHERE {' AND '.join(clauses)}
        ORDER BY {order}, t.id ASC
    """
    if limit is not None:
        params.extend([limit, offset])
        sql += f" LIMIT ${len(params) - 1} OFFSET ${len(params)}"
    return await db.fetch_all(sql, *params)
