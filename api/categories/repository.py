"""
Category persistence.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import asyncpg

from core import db

CATEGORY_COLUMNS = "c.id, c.workspace_id, c.name, c.color, c.position, c.created_by, c.created_at, c.updated_at"


async def list_categories(workspace_id: UUID) -> list[dict[str, Any]]:
    return await db.fetch_all(
        f"""
        SELECT {CATEGORY_COLUMNS},
               (SELECT count(*) FROM tasks t WHERE t.category_id = c.id) AS task_count
        FROM categories c
        WHERE c.workspace_id = $1
        ORDER BY c.position ASC, c.id ASC
        """,
        workspace_id,
    )


async def get_category(category_id: int, *, conn: asyncpg.Connection | None = None) -> dict[str, Any] | None:
    return await db.fetch_one(
        f"""
        SELECT {CATEGORY_COLUMNS},
               (SELECT count(*) FROM tasks t WHERE t.category_id = c.id) AS task_count
        FROM categories c
        WHERE c.id = $1
        """,
        category_id,
        conn=conn,
    )


async def name_taken(workspace_id: UUID, name: str, *, exclude_id: int | None = None) -> bool:
    row = await db.fetch_one(
        """
        SELECT 1
        FROM categories
        WHERE workspace_id = $1
          AND lower(name) = lower($2)
          AND ($3::int IS NULL OR id <> $3)
        """,
        workspace_id,
        name,
        exclude_id,
    )
    return row is not None


async def create_category(
    *,
    workspace_id: UUID,
    name: str,
    color: str,
    created_by: int,
) -> dict[str, Any]:
    row = await db.fetch_one(
        """
        INSERT INTO categories (workspace_id, name, color, position, created_by)
        VALUES (
            $1, $2, $3,
            (SELECT coalesce(max(position), -1) + 1 FROM categories WHERE workspace_id = $1),
            $4
        )
        RETURNING id, workspace_id, name, color, position, created_by, created_at, updated_at
        """,
        workspace_id,
        name,
        color,
        created_by,
    )
    if row is None:
        raise RuntimeError("Failed to create category.")
    return row


async def update_category(category_id: int, fields: dict[str, Any]) -> dict[str, Any] | None:
    # Keys come from the service's allow-list, never from the request.
    assignments = ", ".join(f"{column} = ${i}" for i, column in enumerate(fields, start=2))
    return await db.fetch_one(
        f"""
        UPDATE categories
        SET {assignments}, updated_at = now()
        WHERE id = $1
        RETURNING id, workspace_id, name, color, position, created_by, created_at, updated_at
        """,
        category_id,
        *fields.values(),
    )


async def count_tasks(category_id: int) -> int:
    return int(await db.fetch_val("SELECT count(*) FROM tasks WHERE category_id = $1", category_id) or 0)


async def delete_category(category_id: int) -> bool:
    async with db.transaction() as conn:
        row = await db.fetch_one(
            "DELETE FROM categories WHERE id = $1 RETURNING workspace_id, position",
            category_id,
            conn=conn,
        )
        if row is None:
            return False
        await db.execute(
            """
            UPDATE categories
            SET position = position - 1
            WHERE workspace_id = $1
              AND position > $2
            """,
            row["workspace_id"],
            row["position"],
            conn=conn,
        )
        return True


async def workspace_category_ids(workspace_id: UUID) -> set[int]:
    rows = await db.fetch_all("SELECT id FROM categories WHERE workspace_id = $1", workspace_id)
    return {int(r["id"]) for r in rows}


async def reorder(workspace_id: UUID, category_ids: list[int]) -> None:
    async with db.transaction() as conn:
        for position, category_id in enumerate(category_ids):
            await db.execute(
                """
                UPDATE categories
                SET position = $3, updated_at = now()
                WHERE id = $1
                  AND workspace_id = $2
                """,
                category_id,
                workspace_id,
                position,
                conn=conn,
            )
