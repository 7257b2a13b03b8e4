"""
Task persistence.

Every read goes through TASK_SELECT so list, detail and subtask views carry
the same columns (category, creator, assignees, subtask counters).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

import asyncpg

from core import db

TASK_SELECT = """
    SELECT
      t.id, t.workspace_id, t.title, t.description, t.category_id,
      t.priority, t.status, t.due_date, t.completed_at, t.position,
      t.parent_task_id, t.created_by, t.created_at, t.updated_at,
      c.name AS category_name, c.color AS category_color,
      creator.name AS created_by_name,
      (SELECT count(*) FROM tasks s WHERE s.parent_task_id = t.id) AS subtask_count,
      (SELECT count(*) FROM tasks s WHERE s.parent_task_id = t.id AND s.status = 'completed')
        AS completed_subtask_count,
      coalesce(
        (SELECT json_agg(json_build_object('id', u.id, 'name', u.name, 'email', u.email) ORDER BY u.name)
         FROM task_assignments ta
         JOIN users u ON u.id = ta.user_id
         WHERE ta.task_id = t.id),
        '[]'::json
      ) AS assignees
    FROM tasks t
    LEFT JOIN categories c ON c.id = t.category_id
    LEFT JOIN users creator ON creator.id = t.created_by
"""


@dataclass
class TaskFilters:
    workspace_id: UUID
    category_id: int | None = None
    assignee_ids: list[int] = field(default_factory=list)
    status: str | None = None
    priority: str | None = None
    search: str | None = None
    parent_task_id: int | None = None
    top_level_only: bool = False
    limit: int | None = None
    offset: int = 0


def build_list_query(filters: TaskFilters) -> tuple[str, list[Any]]:
    clauses = ["t.workspace_id = $1"]
    params: list[Any] = [filters.workspace_id]

    def add(clause: str, value: Any) -> None:
        params.append(value)
        clauses.append(clause.format(n=len(params)))

    if filters.category_id is not None:
        add("t.category_id = ${n}", filters.category_id)
    if filters.assignee_ids:
        add(
            "EXISTS (SELECT 1 FROM task_assignments ta WHERE ta.task_id = t.id AND ta.user_id = ANY(${n}::int[]))",
            list(filters.assignee_ids),
        )
    if filters.status:
        add("t.status = ${n}", filters.status)
    if filters.priority:
        add("t.priority = ${n}", filters.priority)
    if filters.search:
        add("(t.title ILIKE ${n} OR t.description ILIKE ${n})", f"%{filters.search}%")
    if filters.parent_task_id is not None:
        add("t.parent_task_id = ${n}", filters.parent_task_id)
    elif filters.top_level_only:
        clauses.append("t.parent_task_id IS NULL")

    sql = f"{TASK_SELECT} WHERE {' AND '.join(clauses)} ORDER BY c.position ASC NULLS LAST, t.position ASC, t.id ASC"
    if filters.limit is not None:
        params.append(filters.limit)
        sql += f" LIMIT ${len(params)}"
        params.append(filters.offset)
        sql += f" OFFSET ${len(params)}"
    return sql, params


async def list_tasks(filters: TaskFilters) -> list[dict[str, Any]]:
    sql, params = build_list_query(filters)
    return await db.fetch_all(sql, *params)


async def get_task(task_id: int, *, conn: asyncpg.Connection | None = None) -> dict[str, Any] | None:
    return await db.fetch_one(f"{TASK_SELECT} WHERE t.id = $1", task_id, conn=conn)


async def get_task_row(task_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT id, workspace_id, title, category_id, parent_task_id, status, position, completed_at
        FROM tasks
        WHERE id = $1
        """,
        task_id,
    )


async def list_subtasks(task_id: int) -> list[dict[str, Any]]:
    return await db.fetch_all(
        f"{TASK_SELECT} WHERE t.parent_task_id = $1 ORDER BY t.position ASC, t.id ASC",
        task_id,
    )


async def category_workspace(category_id: int) -> UUID | None:
    return await db.fetch_val("SELECT workspace_id FROM categories WHERE id = $1", category_id)


async def insert_task(
    *,
    workspace_id: UUID,
    title: str,
    description: str | None,
    category_id: int | None,
    parent_task_id: int | None,
    priority: str,
    status: str,
    due_date: date | None,
    completed_at: datetime | None,
    created_by: int,
    assignee_ids: list[int],
) -> int:
    async with db.transaction() as conn:
        task_id = await db.fetch_val(
            """
            INSERT INTO tasks (
                workspace_id, title, description, category_id, parent_task_id,
                priority, status, due_date, completed_at, position, created_by
            )
            VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9,
                (SELECT coalesce(max(position), -1) + 1
                 FROM tasks
                 WHERE workspace_id = $1 AND category_id IS NOT DISTINCT FROM $4),
                $10
            )
            RETURNING id
            """,
            workspace_id,
            title,
            description,
            category_id,
            parent_task_id,
            priority,
            status,
            due_date,
            completed_at,
            created_by,
            conn=conn,
        )
        await replace_assignees(conn, task_id, assignee_ids)
        return int(task_id)


async def replace_assignees(conn: asyncpg.Connection, task_id: int, user_ids: list[int]) -> None:
    await db.execute("DELETE FROM task_assignments WHERE task_id = $1", task_id, conn=conn)
    if user_ids:
        await db.execute(
            """
            INSERT INTO task_assignments (task_id, user_id)
            SELECT $1, unnest($2::int[])
            ON CONFLICT DO NOTHING
            """,
            task_id,
            list(dict.fromkeys(user_ids)),
            conn=conn,
        )


async def assignee_ids(task_id: int) -> list[int]:
    rows = await db.fetch_all("SELECT user_id FROM task_assignments WHERE task_id = $1", task_id)
    return [int(r["user_id"]) for r in rows]


async def update_task(task_id: int, fields: dict[str, Any], *, assignees: list[int] | None = None) -> None:
    async with db.transaction() as conn:
        if fields:
            # Keys come from the service's allow-list, never from the request.
            assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(fields, start=2))
            await db.execute(
                f"UPDATE tasks SET {assignments}, updated_at = now() WHERE id = $1",
                task_id,
                *fields.values(),
                conn=conn,
            )
        else:
            await db.execute("UPDATE tasks SET updated_at = now() WHERE id = $1", task_id, conn=conn)
        if assignees is not None:
            await replace_assignees(conn, task_id, assignees)


async def move_task(
    task_id: int,
    *,
    workspace_id: UUID,
    old_category_id: int | None,
    old_position: int,
    new_category_id: int | None,
    position: int,
) -> None:
    async with db.transaction() as conn:
        # Leave the old slot first so a move inside one category stays contiguous.
        await _close_gap(conn, workspace_id, old_category_id, old_position, exclude_id=task_id)
        await db.execute(
            """
            UPDATE tasks
            SET position = position + 1
            WHERE workspace_id = $1
              AND category_id IS NOT DISTINCT FROM $2
              AND id <> $3
              AND position >= $4
            """,
            workspace_id,
            new_category_id,
            task_id,
            position,
            conn=conn,
        )
        await db.execute(
            "UPDATE tasks SET category_id = $2, position = $3, updated_at = now() WHERE id = $1",
            task_id,
            new_category_id,
            position,
            conn=conn,
        )


async def delete_task(task_id: int) -> bool:
    async with db.transaction() as conn:
        row = await db.fetch_one(
            "DELETE FROM tasks WHERE id = $1 RETURNING workspace_id, category_id, position",
            task_id,
            conn=conn,
        )
        if row is None:
            return False
        await _close_gap(conn, row["workspace_id"], row["category_id"], row["position"])
        return True


async def _close_gap(
    conn: asyncpg.Connection,
    workspace_id: UUID,
    category_id: int | None,
    position: int,
    *,
    exclude_id: int | None = None,
) -> None:
    await db.execute(
        """
        UPDATE tasks
        SET position = position - 1
        WHERE workspace_id = $1
          AND category_id IS NOT DISTINCT FROM $2
          AND position > $3
          AND ($4::int IS NULL OR id <> $4)
        """,
        workspace_id,
        category_id,
        position,
        exclude_id,
        conn=conn,
    )


async def get_users(user_ids: list[int]) -> list[dict[str, Any]]:
    if not user_ids:
        return []
    return await db.fetch_all(
        """
        SELECT id, email, name, email_notifications_enabled
        FROM users
        WHERE id = ANY($1::int[])
          AND deleted_at IS NULL
        """,
        list(user_ids),
    )
