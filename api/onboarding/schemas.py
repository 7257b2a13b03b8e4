"""
Onboarding API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel


class ProgressRequest(BaseModel):
    step: int | None = None
    step_name: str | None = None
