"""
Comment persistence.
"""

from __future__ import annotations

from typing import Any

from core import db

COMMENT_SELECT = """
    SELECT cm.id, cm.task_id, cm.author_id, cm.content, cm.created_at, cm.updated_at,
           u.name AS author_name, u.email AS author_email, u.avatar_url AS author_avatar_url
    FROM comments cm
    LEFT JOIN users u ON u.id = cm.author_id
"""


async def list_comments(task_id: int, *, after_id: int | None, limit: int) -> list[dict[str, Any]]:
    return await db.fetch_all(
        f"""
        {COMMENT_SELECT}
        WHERE cm.task_id = $1
          AND ($2::int IS NULL OR cm.id > $2)
        ORDER BY cm.id ASC
        LIMIT $3
        """,
        task_id,
        after_id,
        limit,
    )


async def get_comment(comment_id: int) -> dict[str, Any] | None:
    return await db.fetch_one(
        f"""
        SELECT sub.*, t.workspace_id
        FROM ({COMMENT_SELECT} WHERE cm.id = $1) sub
        JOIN tasks t ON t.id = sub.task_id
        """,
        comment_id,
    )


async def insert_comment(*, task_id: int, author_id: int, content: str) -> int:
    return int(
        await db.fetch_val(
            "INSERT INTO comments (task_id, author_id, content) VALUES ($1, $2, $3) RETURNING id",
            task_id,
            author_id,
            content,
        )
    )


async def update_comment(comment_id: int, *, content: str) -> None:
    await db.execute(
        "UPDATE comments SET content = $2, updated_at = now() WHERE id = $1",
        comment_id,
        content,
    )


async def delete_comment(comment_id: int) -> bool:
    return db.affected_rows(await db.execute("DELETE FROM comments WHERE id = $1", comment_id)) > 0
