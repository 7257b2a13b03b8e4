"""
Workspace endpoints: CRUD, members, invitations.

Onboarding routes live in the onboarding package under the same prefix.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from activity.service import audit
from auth import dependencies as auth_dependencies
from billing.guard import active_subscription
from core import middleware, responses

from . import schemas, service

router = APIRouter(prefix="/api/workspaces")


@router.get("/invite-info/{token}")
async def invite_info(token: str) -> dict:
    return responses.success(await service.get_invite_info(token))


@router.post("/accept-invite/{token}")
async def accept_invite(
    token: str,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    data = await service.accept_invitation(token, user=current_user)
    return responses.success(data, message="Invitation accepted")


@router.get("")
async def list_workspaces(current_user: dict = Depends(auth_dependencies.get_current_user)) -> dict:
    workspaces = await service.list_my_workspaces(user_id=int(current_user["id"]))
    return responses.success({"workspaces": workspaces})


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_workspace(
    payload: schemas.WorkspaceCreateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    workspace = await service.create_workspace(payload.name, user_id=int(current_user["id"]))
    return responses.success({"workspace": workspace}, message="Workspace created")


@router.get("/users")
async def list_workspace_users(
    workspace_id: UUID = Query(...),
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    users = await service.list_workspace_users(workspace_id, user_id=int(current_user["id"]))
    return responses.success({"users": users})


@router.get("/{workspace_id}")
async def get_workspace(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    workspace = await service.get_workspace(workspace_id, user_id=int(current_user["id"]))
    return responses.success({"workspace": workspace})


@router.put(
    "/{workspace_id}",
    dependencies=[Depends(active_subscription), Depends(audit("workspace.update", "workspace"))],
)
async def update_workspace(
    workspace_id: UUID,
    payload: schemas.WorkspaceUpdateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    workspace = await service.update_workspace(workspace_id, payload.name, user_id=int(current_user["id"]))
    return responses.success({"workspace": workspace}, message="Workspace updated")


@router.delete("/{workspace_id}", dependencies=[Depends(audit("workspace.delete", "workspace"))])
async def delete_workspace(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_workspace(workspace_id, user_id=int(current_user["id"]))
    return responses.success(message="Workspace deleted")


@router.get("/{workspace_id}/members")
async def list_members(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    members = await service.list_members(workspace_id, user_id=int(current_user["id"]))
    return responses.success({"members": members})


@router.patch(
    "/{workspace_id}/members/{member_id}",
    dependencies=[Depends(active_subscription), Depends(audit("member.role_change", "member"))],
)
async def update_member_role(
    workspace_id: UUID,
    member_id: int,
    payload: schemas.MemberRoleRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    member = await service.update_member_role(
        workspace_id, member_id, payload.role, user_id=int(current_user["id"])
    )
    return responses.success({"member": member}, message="Member role updated")


@router.delete(
    "/{workspace_id}/members/{member_id}",
    dependencies=[Depends(audit("member.remove", "member"))],
)
async def remove_member(
    workspace_id: UUID,
    member_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.remove_member(workspace_id, member_id, user_id=int(current_user["id"]))
    return responses.success(message="Member removed")


@router.post(
    "/{workspace_id}/invite",
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(middleware.invite_limiter),
        Depends(active_subscription),
        Depends(audit("member.invite", "invitation")),
    ],
)
async def invite_member(
    workspace_id: UUID,
    payload: schemas.InviteRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    invitation = await service.invite(workspace_id, payload.email, payload.role, user=current_user)
    return responses.success({"invitation": invitation}, message="Invitation sent")


@router.get("/{workspace_id}/invitations")
async def list_invitations(
    workspace_id: UUID,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    invitations = await service.list_invitations(workspace_id, user_id=int(current_user["id"]))
    return responses.success({"invitations": invitations})


@router.delete("/{workspace_id}/invitations/{invitation_id}")
async def cancel_invitation(
    workspace_id: UUID,
    invitation_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.cancel_invitation(workspace_id, invitation_id, user_id=int(current_user["id"]))
    return responses.success(message="Invitation canceled")
