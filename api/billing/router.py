"""
Billing endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request

from auth import dependencies as auth_dependencies
from core import responses

from . import schemas, service

router = APIRouter(prefix="/api/billing")


@router.get("/plans")
async def list_plans() -> dict:
    return responses.success(await service.list_plans())


@router.get("/subscription")
async def get_subscription(
    workspace_id: UUID = Query(...),
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    data = await service.get_subscription(workspace_id, user_id=int(current_user["id"]))
    return responses.success(data)


@router.post("/checkout")
async def create_checkout(
    request: schemas.WorkspaceBillingRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    data = await service.create_checkout_session(request.workspace_id, user=current_user)
    return responses.success(data)


@router.post("/portal")
async def create_portal(
    request: schemas.WorkspaceBillingRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    data = await service.create_portal_session(request.workspace_id, user=current_user)
    return responses.success(data)


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
) -> dict:
    # Signature is computed over the raw body, so read bytes before any parsing.
    payload = await request.body()
    return await service.handle_webhook(payload, stripe_signature)
