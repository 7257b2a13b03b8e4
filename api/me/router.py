"""
Current-user endpoints (/api/me).
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response

from auth import dependencies as auth_dependencies
from auth.router import clear_auth_cookies, set_auth_cookies
from core import middleware, responses

from . import schemas, service

router = APIRouter(prefix="/api/me")


@router.get("")
async def get_profile(current_user: dict = Depends(auth_dependencies.get_current_user)) -> dict:
    return responses.success({"user": await service.get_profile(user_id=int(current_user["id"]))})


@router.patch("")
async def update_profile(
    payload: schemas.ProfileUpdateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    user = await service.update_profile(payload, user_id=int(current_user["id"]))
    return responses.success({"user": user}, message="Profile updated successfully")


@router.patch("/preferences")
async def update_preferences(
    payload: schemas.PreferencesUpdateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    user = await service.update_preferences(payload, user_id=int(current_user["id"]))
    return responses.success({"user": user}, message="Preferences updated successfully")


@router.patch("/notifications")
async def update_notifications(
    payload: schemas.NotificationsUpdateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    user = await service.update_notifications(payload, user_id=int(current_user["id"]))
    return responses.success({"user": user}, message="Notification settings updated successfully")


@router.post("/password", dependencies=[Depends(middleware.auth_limiter)])
async def change_password(
    payload: schemas.ChangePasswordRequest,
    request: Request,
    response: Response,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    tokens = await service.change_password(
        payload,
        user_id=int(current_user["id"]),
        user_agent=request.headers.get("user-agent"),
        ip_address=middleware.client_ip(request),
    )
    set_auth_cookies(response, tokens)
    return responses.success({"token": tokens.access_token}, message="Password changed successfully")


@router.delete("/account")
async def delete_account(
    payload: schemas.DeleteAccountRequest,
    response: Response,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_account(payload, user_id=int(current_user["id"]))
    clear_auth_cookies(response)
    return responses.success(message="Account deleted successfully")


@router.get("/tasks")
async def my_tasks(
    workspace_id: UUID | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    sort: str = Query(default="due_date"),
    order: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int | None = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    data = await service.my_tasks(
        user_id=int(current_user["id"]),
        workspace_id=workspace_id,
        status_filter=status_filter,
        sort=sort,
        order=order,
        limit=limit,
        offset=offset,
    )
    return responses.success(data)


@router.get("/tasks/export")
async def export_my_tasks(current_user: dict = Depends(auth_dependencies.get_current_user)) -> Response:
    filename, content = await service.export_my_tasks_csv(user_id=int(current_user["id"]))
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
