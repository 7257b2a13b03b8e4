"""
Activity feed endpoint.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import responses

from . import service

router = APIRouter(prefix="/api/activity")


@router.get("")
async def list_activity(
    workspace_id: UUID = Query(...),
    limit: int = Query(50, ge=1, le=200),
    before: int | None = Query(default=None, ge=1),
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    data = await service.list_activity(
        workspace_id,
        user_id=int(current_user["id"]),
        limit=limit,
        before=before,
    )
    return responses.success(data)
