"""
Task business logic: board tasks, subtasks, assignments and ordering.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status

from activity import service as activity
from billing import guard, limits
from core import dates, sanitize
from notifications import queue as email_queue
from workspaces import access
from workspaces import repository as workspaces_repository

from . import priority as task_priority
from . import repository, schemas

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def to_task_view(row: dict) -> dict:
    return {
        "id": int(row["id"]),
        "title": row["title"],
        "description": row.get("description"),
        "categoryId": row.get("category_id"),
        "categoryName": row.get("category_name"),
        "categoryColor": row.get("category_color"),
        "assignees": list(row.get("assignees") or []),
        "priority": row["priority"],
        "status": row["status"],
        "dueDate": dates.format_due_date(row.get("due_date")),
        "completedAt": row.get("completed_at"),
        "position": int(row.get("position") or 0),
        "parentTaskId": row.get("parent_task_id"),
        "subtaskCount": int(row.get("subtask_count") or 0),
        "completedSubtaskCount": int(row.get("completed_subtask_count") or 0),
        "createdBy": row.get("created_by"),
        "createdByName": row.get("created_by_name"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
        "workspaceId": str(row["workspace_id"]),
    }


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _validate_status(value: str) -> str:
    if value not in schemas.STATUSES:
        raise _bad_request(f"Invalid status. Must be one of: {', '.join(schemas.STATUSES)}.")
    return value


def _validate_priority(value: str) -> str:
    if value not in task_priority.PRIORITIES:
        raise _bad_request(f"Invalid priority. Must be one of: {', '.join(task_priority.PRIORITIES)}.")
    return value


def _parse_due(value: str | None) -> date | None:
    try:
        return dates.parse_due_date(value)
    except ValueError:
        raise _bad_request("Invalid due date. Use YYYY-MM-DD.") from None


def _clean_title(title: str | None) -> str:
    cleaned = sanitize.clean_required(title)
    if not cleaned:
        raise _bad_request("Task title is required.")
    return cleaned


async def _load(task_id: int) -> dict:
    row = await repository.get_task(task_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found.")
    return row


async def _check_category(category_id: int | None, workspace_id: UUID) -> None:
    if category_id is None:
        return None
    owner = await repository.category_workspace(category_id)
    if owner is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found.")
    if owner != workspace_id:
        raise _bad_request("Category does not belong to this workspace.")


async def _check_assignees(assignee_ids: list[int], workspace_id: UUID) -> list[int]:
    ids = list(dict.fromkeys(int(i) for i in assignee_ids))
    if ids and not await workspaces_repository.are_members(workspace_id, ids):
        raise _bad_request("All assignees must be members of the workspace.")
    return ids


async def _notify_assignees(task: dict, user_ids: list[int], *, assigned_by: dict) -> None:
    recipients = [u for u in await repository.get_users(user_ids) if int(u["id"]) != int(assigned_by["id"])]
    for user in recipients:
        if not user.get("email") or not user.get("email_notifications_enabled", True):
            continue
        await email_queue.notify_task_assignment(
            to=user["email"],
            user_name=user.get("name"),
            task_id=int(task["id"]),
            task_title=task["title"],
            assigned_by_name=assigned_by.get("name"),
            task_description=task.get("description"),
            due_date=dates.format_due_date(task.get("due_date")),
            priority=task.get("priority"),
        )


async def list_tasks(
    workspace_id: UUID,
    *,
    user_id: int,
    category_id: int | None = None,
    assignee_ids: list[int] | None = None,
    status_filter: str | None = None,
    priority: str | None = None,
    search: str | None = None,
    parent_task_id: int | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[dict]:
    await access.require_member(user_id, workspace_id)
    filters = repository.TaskFilters(
        workspace_id=workspace_id,
        category_id=category_id,
        assignee_ids=assignee_ids or [],
        status=_validate_status(status_filter) if status_filter else None,
        priority=_validate_priority(priority) if priority else None,
        search=(search or "").strip() or None,
        parent_task_id=parent_task_id,
        limit=min(limit, MAX_PAGE_SIZE) if limit else None,
        offset=max(offset, 0),
    )
    return [to_task_view(r) for r in await repository.list_tasks(filters)]


async def get_task(task_id: int, *, user_id: int) -> dict:
    row = await _load(task_id)
    await access.require_member(user_id, row["workspace_id"])
    return to_task_view(row)


async def list_subtasks(task_id: int, *, user_id: int) -> list[dict]:
    row = await _load(task_id)
    await access.require_member(user_id, row["workspace_id"])
    return [to_task_view(r) for r in await repository.list_subtasks(task_id)]


async def create_task(payload: schemas.TaskCreateRequest, *, user: dict) -> dict:
    user_id = int(user["id"])
    workspace_id = payload.workspace_id
    await access.require_editor(user_id, workspace_id)
    await guard.require_active_subscription(workspace_id)

    title = _clean_title(payload.title)
    description = sanitize.strip_tags(payload.description)
    task_status = _validate_status(payload.status or "todo")
    level = _validate_priority(payload.priority or task_priority.DEFAULT_PRIORITY)
    due = _parse_due(payload.due_date)

    category_id = payload.category_id
    if payload.parent_task_id is not None:
        parent = await repository.get_task_row(payload.parent_task_id)
        if parent is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent task not found.")
        if parent["workspace_id"] != workspace_id:
            raise _bad_request("Parent task does not belong to this workspace.")
        if parent["parent_task_id"] is not None:
            raise _bad_request("Subtasks cannot have their own subtasks.")
        if category_id is None:
            category_id = parent["category_id"]
    else:
        await limits.check_task_limit(workspace_id)

    await _check_category(category_id, workspace_id)
    assignees = await _check_assignees(payload.assignee_ids, workspace_id)

    task_id = await repository.insert_task(
        workspace_id=workspace_id,
        title=title,
        description=description,
        category_id=category_id,
        parent_task_id=payload.parent_task_id,
        priority=level,
        status=task_status,
        due_date=due,
        completed_at=dates.utc_now() if task_status == "completed" else None,
        created_by=user_id,
        assignee_ids=assignees,
    )
    row = await _load(task_id)

    await _notify_assignees(row, assignees, assigned_by=user)
    await activity.log_activity(
        workspace_id,
        user_id,
        "created",
        "subtask" if payload.parent_task_id else "task",
        task_id,
        {"title": title},
    )
    logger.info("task_created task_id=%s workspace_id=%s", task_id, workspace_id)
    return to_task_view(row)


async def update_task(task_id: int, payload: schemas.TaskUpdateRequest, *, user: dict) -> dict:
    user_id = int(user["id"])
    current = await _load(task_id)
    workspace_id = current["workspace_id"]
    await access.require_editor(user_id, workspace_id)
    await guard.require_active_subscription(workspace_id)

    provided = payload.model_fields_set
    fields: dict[str, Any] = {}

    if "title" in provided:
        fields["title"] = _clean_title(payload.title)
    if "description" in provided:
        fields["description"] = sanitize.strip_tags(payload.description)
    if "category_id" in provided:
        await _check_category(payload.category_id, workspace_id)
        fields["category_id"] = payload.category_id
    if "priority" in provided:
        fields["priority"] = _validate_priority(payload.priority or "")
    if "due_date" in provided:
        fields["due_date"] = _parse_due(payload.due_date)
    if "status" in provided:
        new_status = _validate_status(payload.status or "")
        fields["status"] = new_status
        if new_status == "completed" and current["status"] != "completed":
            fields["completed_at"] = dates.utc_now()
        elif new_status != "completed" and current["status"] == "completed":
            fields["completed_at"] = None

    assignees: list[int] | None = None
    if "assignee_ids" in provided:
        assignees = await _check_assignees(payload.assignee_ids or [], workspace_id)

    if not fields and assignees is None:
        raise _bad_request("No fields to update.")

    previous_assignees = {int(a["id"]) for a in current.get("assignees") or []}
    await repository.update_task(task_id, fields, assignees=assignees)
    row = await _load(task_id)

    if assignees is not None:
        added = [uid for uid in assignees if uid not in previous_assignees]
        if added:
            await _notify_assignees(row, added, assigned_by=user)

    changes = {k: (dates.format_due_date(v) if k == "due_date" else v) for k, v in fields.items() if k != "completed_at"}
    if assignees is not None:
        changes["assigneeIds"] = assignees
    action = "completed" if fields.get("status") == "completed" and current["status"] != "completed" else "updated"
    await activity.log_activity(workspace_id, user_id, action, "task", task_id, {"title": row["title"], "changes": changes})
    return to_task_view(row)


async def update_task_position(task_id: int, payload: schemas.TaskPositionRequest, *, user_id: int) -> dict:
    current = await _load(task_id)
    workspace_id = current["workspace_id"]
    await access.require_editor(user_id, workspace_id)
    await guard.require_active_subscription(workspace_id)

    new_category_id = payload.category_id if "category_id" in payload.model_fields_set else current["category_id"]
    if new_category_id != current["category_id"]:
        await _check_category(new_category_id, workspace_id)

    await repository.move_task(
        task_id,
        workspace_id=workspace_id,
        old_category_id=current["category_id"],
        old_position=int(current["position"]),
        new_category_id=new_category_id,
        position=payload.position,
    )
    if new_category_id != current["category_id"]:
        await activity.log_activity(
            workspace_id,
            user_id,
            "moved",
            "task",
            task_id,
            {"title": current["title"], "from": current["category_id"], "to": new_category_id},
        )
    return {"id": task_id, "title": current["title"], "categoryId": new_category_id, "position": payload.position}


async def delete_task(task_id: int, *, user_id: int) -> None:
    current = await _load(task_id)
    workspace_id = current["workspace_id"]
    await access.require_editor(user_id, workspace_id)
    await guard.require_active_subscription(workspace_id)

    if not await repository.delete_task(task_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found.")
    await activity.log_activity(workspace_id, user_id, "deleted", "task", task_id, {"title": current["title"]})
