"""
Task API schemas.

Update payloads are partial: only fields present in the request body are
applied, so an explicit null clears a value (due date, category).
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

STATUSES = ("todo", "in_progress", "completed")


class TaskCreateRequest(BaseModel):
    workspace_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=10000)
    category_id: int | None = None
    parent_task_id: int | None = None
    assignee_ids: list[int] = Field(default_factory=list)
    priority: str = "medium"
    status: str = "todo"
    due_date: str | None = None


class TaskUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=10000)
    category_id: int | None = None
    assignee_ids: list[int] | None = None
    priority: str | None = None
    status: str | None = None
    due_date: str | None = None


class TaskPositionRequest(BaseModel):
    category_id: int | None = None
    position: int = Field(..., ge=0)
