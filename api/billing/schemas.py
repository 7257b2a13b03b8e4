"""
Billing API schemas.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class WorkspaceBillingRequest(BaseModel):
    workspace_id: UUID
