"""
Workspace activity feed and request audit trail.

Both are side records: a failed write is logged and never propagates into
the request that produced it.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from fastapi import BackgroundTasks, Depends, Request

from auth import dependencies as auth_dependencies
from core import log, middleware
from workspaces import access

from . import repository

logger = logging.getLogger(__name__)


async def log_activity(
    workspace_id: UUID | None,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: Any = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    try:
        await repository.insert_activity(
            workspace_id=workspace_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            metadata=metadata or {},
        )
    except Exception:
        logger.exception(
            "activity_log_failed action=%s entity_type=%s entity_id=%s",
            action,
            entity_type,
            entity_id,
        )


def _to_entry(row: dict) -> dict:
    return {
        "id": int(row["id"]),
        "action": row["action"],
        "entityType": row["entity_type"],
        "entityId": row["entity_id"],
        "metadata": row.get("metadata") or {},
        "userId": row.get("user_id"),
        "userName": row.get("user_name"),
        "createdAt": row["created_at"],
    }


async def list_activity(
    workspace_id: UUID,
    *,
    user_id: int,
    limit: int = 50,
    before: int | None = None,
) -> dict:
    await access.require_member(user_id, workspace_id)
    limit = max(1, min(limit, 200))
    rows = await repository.list_activity(workspace_id, limit=limit + 1, before_id=before)
    has_more = len(rows) > limit
    entries = [_to_entry(r) for r in rows[:limit]]
    return {
        "activities": entries,
        "hasMore": has_more,
        "nextCursor": entries[-1]["id"] if has_more and entries else None,
    }


async def write_audit(**kwargs: Any) -> None:
    try:
        await repository.insert_audit(**kwargs)
    except Exception:
        logger.exception("audit_log_failed action=%s", kwargs.get("action"))


def audit(action: str, resource_type: str):
    """
    Route dependency: records an audit row after a successful response.

    Background tasks only run when the route returns normally, so failed
    requests leave no audit row.
    """

    async def _dependency(
        request: Request,
        background_tasks: BackgroundTasks,
        current_user: dict = Depends(auth_dependencies.get_current_user),
    ) -> None:
        params = request.path_params
        workspace_id = params.get("workspace_id") or request.query_params.get("workspace_id")
        resource_id = params.get("task_id") or params.get("category_id") or params.get("comment_id")
        resource_id = resource_id or params.get("member_id") or params.get("workspace_id")
        try:
            workspace_uuid = UUID(str(workspace_id)) if workspace_id else None
        except ValueError:
            workspace_uuid = None
        background_tasks.add_task(
            write_audit,
            user_id=int(current_user["id"]),
            workspace_id=workspace_uuid,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            ip_address=middleware.client_ip(request),
            user_agent=request.headers.get("user-agent"),
            request_id=log.current_request_id(),
        )

    return _dependency
