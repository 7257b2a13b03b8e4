"""
Reminder API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ReminderRunRequest(BaseModel):
    dry_run: bool = False
    lookahead_days: int | None = Field(default=None, ge=0, le=30)
