"""
Category (board column) business logic.
"""

from __future__ import annotations

import logging
import re
from uuid import UUID

from fastapi import HTTPException, status

from activity import service as activity
from billing import guard
from core import sanitize
from workspaces import access

from . import repository, schemas

logger = logging.getLogger(__name__)

COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def to_category_view(row: dict) -> dict:
    view = {
        "id": int(row["id"]),
        "name": row["name"],
        "color": row["color"],
        "position": int(row["position"]),
        "workspaceId": str(row["workspace_id"]),
        "createdBy": row.get("created_by"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }
    if "task_count" in row:
        view["taskCount"] = int(row["task_count"] or 0)
    return view


def _validate_color(color: str) -> str:
    if not COLOR_RE.match(color or ""):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Color must be a valid hex code (e.g. #3B82F6).",
        )
    return color


def _validate_name(name: str | None) -> str:
    cleaned = sanitize.clean_required(name)
    if not cleaned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category name is required.")
    if len(cleaned) > 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category name is too long.")
    return cleaned


async def _load(category_id: int) -> dict:
    row = await repository.get_category(category_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found.")
    return row


async def list_categories(workspace_id: UUID, *, user_id: int) -> list[dict]:
    await access.require_member(user_id, workspace_id)
    return [to_category_view(r) for r in await repository.list_categories(workspace_id)]


async def get_category(category_id: int, *, user_id: int) -> dict:
    row = await _load(category_id)
    await access.require_member(user_id, row["workspace_id"])
    return to_category_view(row)


async def create_category(payload: schemas.CategoryCreateRequest, *, user_id: int) -> dict:
    await access.require_editor(user_id, payload.workspace_id)
    await guard.require_active_subscription(payload.workspace_id)

    name = _validate_name(payload.name)
    color = _validate_color(payload.color or schemas.DEFAULT_COLOR)
    if await repository.name_taken(payload.workspace_id, name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A category with this name already exists.",
        )

    row = await repository.create_category(
        workspace_id=payload.workspace_id,
        name=name,
        color=color,
        created_by=user_id,
    )
    await activity.log_activity(payload.workspace_id, user_id, "created", "category", row["id"], {"name": name})
    return to_category_view({**row, "task_count": 0})


async def update_category(category_id: int, payload: schemas.CategoryUpdateRequest, *, user_id: int) -> dict:
    current = await _load(category_id)
    workspace_id = current["workspace_id"]
    await access.require_editor(user_id, workspace_id)
    await guard.require_active_subscription(workspace_id)

    fields: dict = {}
    if payload.name is not None:
        name = _validate_name(payload.name)
        if await repository.name_taken(workspace_id, name, exclude_id=category_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A category with this name already exists.",
            )
        fields["name"] = name
    if payload.color is not None:
        fields["color"] = _validate_color(payload.color)
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update.")

    row = await repository.update_category(category_id, fields)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found.")
    await activity.log_activity(workspace_id, user_id, "updated", "category", category_id, fields)
    return to_category_view({**row, "task_count": current.get("task_count", 0)})


async def delete_category(category_id: int, *, user_id: int) -> None:
    current = await _load(category_id)
    workspace_id = current["workspace_id"]
    await access.require_editor(user_id, workspace_id)
    await guard.require_active_subscription(workspace_id)

    task_count = await repository.count_tasks(category_id)
    if task_count:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot delete category with {task_count} task(s). Move or delete the tasks first.",
        )
    if not await repository.delete_category(category_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found.")
    await activity.log_activity(workspace_id, user_id, "deleted", "category", category_id, {"name": current["name"]})


async def reorder_categories(payload: schemas.CategoryReorderRequest, *, user_id: int) -> list[dict]:
    workspace_id = payload.workspace_id
    await access.require_editor(user_id, workspace_id)
    await guard.require_active_subscription(workspace_id)

    ids = [int(i) for i in payload.category_ids]
    if len(set(ids)) != len(ids):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Duplicate category ids.")
    known = await repository.workspace_category_ids(workspace_id)
    if not set(ids) <= known:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="All categories must belong to the workspace.",
        )

    await repository.reorder(workspace_id, ids)
    logger.info("categories_reordered workspace_id=%s count=%s", workspace_id, len(ids))
    return [to_category_view(r) for r in await repository.list_categories(workspace_id)]
