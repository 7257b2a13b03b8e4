"""
Workspace API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class WorkspaceCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class WorkspaceUpdateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class InviteRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    role: str = "member"


class MemberRoleRequest(BaseModel):
    role: str
