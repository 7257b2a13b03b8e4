"""
Task comments.

Any workspace member except viewers may comment; only the author edits, and
the author or a workspace admin deletes.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from activity import service as activity
from core import sanitize
from tasks import repository as tasks_repository
from workspaces import access

from . import repository, schemas

logger = logging.getLogger(__name__)


def to_comment_view(row: dict) -> dict:
    return {
        "id": int(row["id"]),
        "taskId": int(row["task_id"]),
        "content": row["content"],
        "authorId": row.get("author_id"),
        "authorName": row.get("author_name"),
        "authorEmail": row.get("author_email"),
        "authorAvatarUrl": row.get("author_avatar_url"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def _clean_content(content: str | None) -> str:
    cleaned = sanitize.clean_required(content)
    if not cleaned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Comment content is required.")
    if len(cleaned) > schemas.MAX_COMMENT_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Comment must be at most {schemas.MAX_COMMENT_LENGTH} characters.",
        )
    return cleaned


async def _task_workspace(task_id: int) -> dict:
    task = await tasks_repository.get_task_row(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found.")
    return task


async def _load(comment_id: int) -> dict:
    row = await repository.get_comment(comment_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found.")
    return row


async def list_comments(task_id: int, *, user_id: int, cursor: int | None = None, limit: int = 20) -> dict:
    task = await _task_workspace(task_id)
    await access.require_member(user_id, task["workspace_id"])

    limit = max(1, min(limit, 100))
    rows = await repository.list_comments(task_id, after_id=cursor, limit=limit + 1)
    has_more = len(rows) > limit
    comments = [to_comment_view(r) for r in rows[:limit]]
    return {
        "comments": comments,
        "nextCursor": comments[-1]["id"] if has_more and comments else None,
        "hasMore": has_more,
    }


async def create_comment(task_id: int, content: str, *, user_id: int) -> dict:
    task = await _task_workspace(task_id)
    await access.require_editor(user_id, task["workspace_id"])
    cleaned = _clean_content(content)

    comment_id = await repository.insert_comment(task_id=task_id, author_id=user_id, content=cleaned)
    row = await _load(comment_id)
    await activity.log_activity(
        task["workspace_id"],
        user_id,
        "commented",
        "task",
        task_id,
        {"title": task["title"], "commentId": comment_id},
    )
    return to_comment_view(row)


async def update_comment(comment_id: int, content: str, *, user_id: int) -> dict:
    current = await _load(comment_id)
    await access.require_member(user_id, current["workspace_id"])
    if current.get("author_id") != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only edit your own comments.",
        )

    await repository.update_comment(comment_id, content=_clean_content(content))
    return to_comment_view(await _load(comment_id))


async def delete_comment(comment_id: int, *, user_id: int) -> None:
    current = await _load(comment_id)
    membership = await access.require_member(user_id, current["workspace_id"])
    if current.get("author_id") != user_id and membership["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delete your own comments.",
        )
    await repository.delete_comment(comment_id)
    logger.info("comment_deleted comment_id=%s user_id=%s", comment_id, user_id)
