"""
Task endpoints (comment listing/creation is nested under a task).
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from activity.service import audit
from auth import dependencies as auth_dependencies
from comments import schemas as comment_schemas
from comments import service as comment_service
from core import responses

from . import schemas, service

router = APIRouter(prefix="/api/tasks")


def _parse_ids(raw: str | None) -> list[int]:
    ids = []
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return ids


@router.get("")
async def list_tasks(
    workspace_id: UUID = Query(...),
    category_id: int | None = Query(default=None),
    assignee_ids: str | None = Query(default=None, description="Comma-separated user ids"),
    status_filter: str | None = Query(default=None, alias="status"),
    priority: str | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    parent_task_id: int | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    tasks = await service.list_tasks(
        workspace_id,
        user_id=int(current_user["id"]),
        category_id=category_id,
        assignee_ids=_parse_ids(assignee_ids),
        status_filter=status_filter,
        priority=priority,
        search=search,
        parent_task_id=parent_task_id,
        limit=limit,
        offset=offset,
    )
    return responses.success({"tasks": tasks, "count": len(tasks)})


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit("task.create", "task"))],
)
async def create_task(
    payload: schemas.TaskCreateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    task = await service.create_task(payload, user=current_user)
    return responses.success({"task": task}, message="Task created successfully")


@router.get("/{task_id}")
async def get_task(
    task_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    task = await service.get_task(task_id, user_id=int(current_user["id"]))
    return responses.success({"task": task})


@router.get("/{task_id}/subtasks")
async def list_subtasks(
    task_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    subtasks = await service.list_subtasks(task_id, user_id=int(current_user["id"]))
    return responses.success({"subtasks": subtasks, "count": len(subtasks)})


@router.put("/{task_id}", dependencies=[Depends(audit("task.update", "task"))])
async def update_task(
    task_id: int,
    payload: schemas.TaskUpdateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    task = await service.update_task(task_id, payload, user=current_user)
    return responses.success({"task": task}, message="Task updated successfully")


@router.patch("/{task_id}/position", dependencies=[Depends(audit("task.move", "task"))])
async def update_task_position(
    task_id: int,
    payload: schemas.TaskPositionRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    task = await service.update_task_position(task_id, payload, user_id=int(current_user["id"]))
    return responses.success({"task": task}, message="Task position updated successfully")


@router.delete("/{task_id}", dependencies=[Depends(audit("task.delete", "task"))])
async def delete_task(
    task_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_task(task_id, user_id=int(current_user["id"]))
    return responses.success(message="Task deleted successfully")


@router.get("/{task_id}/comments")
async def list_comments(
    task_id: int,
    cursor: int | None = Query(default=None, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    data = await comment_service.list_comments(task_id, user_id=int(current_user["id"]), cursor=cursor, limit=limit)
    return responses.success(data)


@router.post(
    "/{task_id}/comments",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit("comment.create", "comment"))],
)
async def create_comment(
    task_id: int,
    payload: comment_schemas.CommentRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    comment = await comment_service.create_comment(task_id, payload.content, user_id=int(current_user["id"]))
    return responses.success({"comment": comment}, message="Comment added successfully")
