"""
Billing guard for workspace writes.

canceled -> 402 SUBSCRIPTION_CANCELED, past_due -> 402 PAYMENT_PAST_DUE.
A workspace without a subscription row is treated as free/active.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Request

from core.errors import AppError

from . import repository

logger = logging.getLogger(__name__)


async def require_active_subscription(workspace_id: UUID | None) -> dict:
    if workspace_id is None:
        return {"planId": "free", "status": "active"}

    try:
        row = await repository.get_subscription(workspace_id)
    except Exception:
        logger.exception("billing_guard_failed workspace_id=%s", workspace_id)
        return {"planId": "free", "status": "active"}

    if row is None:
        return {"planId": "free", "status": "active"}

    if row["status"] == "canceled":
        raise AppError.payment_required(
            "Your subscription has been canceled. Please resubscribe to continue using this workspace.",
            code="SUBSCRIPTION_CANCELED",
        )
    if row["status"] == "past_due":
        raise AppError.payment_required(
            "Your payment is past due. Please update your payment method to continue.",
            code="PAYMENT_PAST_DUE",
        )
    return {"planId": row["plan_id"], "planName": row.get("plan_name"), "status": row["status"]}


async def active_subscription(request: Request) -> dict:
    """
    Route dependency for endpoints that carry `workspace_id` in the path or
    query string. Body-scoped writes call `require_active_subscription`.
    """
    raw = request.path_params.get("workspace_id") or request.query_params.get("workspace_id")
    try:
        workspace_id = UUID(str(raw)) if raw else None
    except ValueError:
        workspace_id = None
    return await require_active_subscription(workspace_id)
