"""
Category API schemas.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

DEFAULT_COLOR = "#3B82F6"


class CategoryCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = DEFAULT_COLOR
    workspace_id: UUID


class CategoryUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    color: str | None = None


class CategoryReorderRequest(BaseModel):
    workspace_id: UUID
    category_ids: list[int] = Field(..., min_length=1)
