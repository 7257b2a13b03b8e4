"""
Onboarding endpoints, mounted under the workspace prefix.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from auth import dependencies as auth_dependencies
from core import responses

from . import schemas, service

router = APIRouter(prefix="/api/workspaces/{workspace_id}/onboarding")


@router.get("")
async def get_status(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    return responses.success(await service.get_status(workspace_id, user_id=int(current_user["id"])))


@router.post("/start")
async def start(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    progress = await service.start(workspace_id, user_id=int(current_user["id"]))
    return responses.success({"progress": progress}, message="Onboarding started")


@router.put("/progress")
async def update_progress(
    workspace_id: UUID,
    payload: schemas.ProgressRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    name, progress = await service.update_progress(
        workspace_id,
        user_id=int(current_user["id"]),
        step=payload.step,
        step_name=payload.step_name,
    )
    return responses.success({"progress": progress}, message=f'Step "{name}" completed')


@router.post("/complete")
async def complete(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.complete(workspace_id, user_id=int(current_user["id"]))
    return responses.success(message="Onboarding completed successfully")


@router.post("/skip")
async def skip(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.skip(workspace_id, user_id=int(current_user["id"]))
    return responses.success(message="Onboarding skipped")
