"""
Billing business logic: plans, subscription status, Stripe checkout/portal
and webhook processing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import HTTPException, status

from core import db, monitoring, settings, stripe_client
from notifications import queue as email_queue
from workspaces import access
from workspaces import repository as workspaces_repository

from . import repository

logger = logging.getLogger(__name__)

TRIAL_DAYS = 14

STRIPE_STATUS_MAP = {
    "active": "active",
    "past_due": "past_due",
    "canceled": "canceled",
    "trialing": "trialing",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "incomplete_expired": "canceled",
    "paused": "canceled",
}


def map_stripe_status(stripe_status: str | None) -> str:
    return STRIPE_STATUS_MAP.get(str(stripe_status or ""), "active")


def _from_epoch(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _plan_view(row: dict) -> dict:
    return {
        "id": row.get("plan_id") or row.get("id"),
        "name": row.get("plan_name") or row.get("name"),
        "pricePerSeatCents": row.get("price_per_seat_cents"),
        "maxMembers": row.get("max_members"),
        "maxTasks": row.get("max_tasks"),
        "features": row.get("features") or {},
    }


async def list_plans() -> dict:
    rows = await repository.list_active_plans()
    return {"plans": [_plan_view(r) for r in rows]}


async def get_subscription(workspace_id: UUID, *, user_id: int) -> dict:
    await access.require_member(user_id, workspace_id)

    row = await repository.get_subscription(workspace_id)
    if row is None:
        return {"subscription": None, "plan": {"id": "free", "name": "Free"}}

    tasks = await repository.count_top_level_tasks(workspace_id)
    members = await workspaces_repository.count_members(workspace_id)
    return {
        "subscription": {
            "id": int(row["id"]),
            "planId": row["plan_id"],
            "planName": row["plan_name"],
            "status": row["status"],
            "seatCount": row["seat_count"],
            "trialEndsAt": row["trial_ends_at"],
            "currentPeriodStart": row["current_period_start"],
            "currentPeriodEnd": row["current_period_end"],
            "pricePerSeatCents": row["price_per_seat_cents"],
            "createdAt": row["created_at"],
        },
        "plan": _plan_view(row),
        "usage": {"tasks": tasks, "members": members},
    }


async def _require_billing_admin(user_id: int, workspace_id: UUID) -> dict:
    membership = await access.get_membership(user_id, workspace_id)
    if membership is None or membership["role"] != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only workspace admins can manage billing.",
        )
    return membership


async def create_checkout_session(workspace_id: UUID, *, user: dict) -> dict:
    membership = await _require_billing_admin(int(user["id"]), workspace_id)

    price_id = stripe_client.pro_price_id()
    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price configuration is missing.",
        )

    subscription = await repository.get_subscription(workspace_id)
    seat_count = max(await workspaces_repository.count_members(workspace_id), 1)
    customer_id = (subscription or {}).get("stripe_customer_id")

    try:
        if not customer_id:
            customer = await stripe_client.create_customer(
                email=str(user["email"]),
                name=user.get("name"),
                metadata={
                    "workspace_id": str(workspace_id),
                    "workspace_name": membership.get("workspace_name") or "Workspace",
                },
            )
            customer_id = str(customer["id"])
            await repository.set_customer_id(workspace_id, customer_id)

        base = settings.client_url()
        session = await stripe_client.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            quantity=seat_count,
            trial_days=TRIAL_DAYS,
            success_url=f"{base}/settings/billing?session_id={{CHECKOUT_SESSION_ID}}&success=true",
            cancel_url=f"{base}/settings/billing?canceled=true",
            metadata={"workspace_id": str(workspace_id)},
        )
    except stripe_client.StripeError as exc:
        logger.exception("stripe_checkout_failed workspace_id=%s", workspace_id)
        raise HTTPException(status_code=502, detail="Error creating checkout session.") from exc

    logger.info("checkout_session_created workspace_id=%s seats=%s", workspace_id, seat_count)
    return {"checkoutUrl": session.get("url"), "sessionId": session.get("id")}


async def create_portal_session(workspace_id: UUID, *, user: dict) -> dict:
    await _require_billing_admin(int(user["id"]), workspace_id)

    subscription = await repository.get_subscription(workspace_id)
    customer_id = (subscription or {}).get("stripe_customer_id")
    if not customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No billing account found. Please set up billing first.",
        )

    try:
        portal = await stripe_client.create_portal_session(
            customer_id=str(customer_id),
            return_url=f"{settings.client_url()}/settings/billing",
        )
    except stripe_client.StripeError as exc:
        logger.exception("stripe_portal_failed workspace_id=%s", workspace_id)
        raise HTTPException(status_code=502, detail="Error creating portal session.") from exc

    return {"portalUrl": portal.get("url")}


def _workspace_from_metadata(obj: dict) -> UUID | None:
    metadata = obj.get("metadata") or {}
    details = (obj.get("subscription_details") or {}).get("metadata") or {}
    raw = details.get("workspace_id") or metadata.get("workspace_id")
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        logger.warning("webhook_bad_workspace_id value=%s", raw)
        return None


def _seat_count(subscription: dict) -> int:
    items = (subscription.get("items") or {}).get("data") or []
    if items and isinstance(items[0], dict):
        return int(items[0].get("quantity") or 1)
    return 1


async def _trial_ending(workspace_id: UUID, subscription: dict) -> None:
    workspace = await workspaces_repository.get_workspace(workspace_id)
    trial_end = _from_epoch(subscription.get("trial_end"))
    end_text = trial_end.strftime("%Y-%m-%d") if trial_end else "soon"
    for admin in await workspaces_repository.list_admin_recipients(workspace_id):
        await email_queue.notify_trial_ending(
            to=str(admin["email"]),
            user_name=admin.get("name"),
            workspace_name=str((workspace or {}).get("name") or "your workspace"),
            trial_end_date=end_text,
        )


async def handle_event(event: dict) -> str:
    """
    Apply one verified Stripe event. Returns the event type for logging.
    """
    event_type = str(event.get("type") or "")
    obj = ((event.get("data") or {}).get("object")) or {}
    workspace_id = _workspace_from_metadata(obj)

    if workspace_id is None:
        if event_type.startswith(("customer.subscription.", "invoice.")):
            logger.warning("webhook_missing_workspace event_type=%s", event_type)
        return event_type

    async with db.transaction() as conn:
        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            await repository.apply_stripe_subscription(
                conn,
                workspace_id=workspace_id,
                stripe_subscription_id=str(obj.get("id")),
                status=map_stripe_status(obj.get("status")),
                trial_ends_at=_from_epoch(obj.get("trial_end")),
                period_start=_from_epoch(obj.get("current_period_start")),
                period_end=_from_epoch(obj.get("current_period_end")),
                seat_count=_seat_count(obj),
                cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            )
        elif event_type == "customer.subscription.deleted":
            await repository.downgrade_to_free(conn, workspace_id=workspace_id)
        elif event_type == "invoice.paid":
            await repository.insert_invoice(
                conn,
                workspace_id=workspace_id,
                stripe_invoice_id=str(obj.get("id")),
                amount_cents=int(obj.get("amount_paid") or 0),
                currency=str(obj.get("currency") or "eur"),
                status="paid",
                period_start=_from_epoch(obj.get("period_start")),
                period_end=_from_epoch(obj.get("period_end")),
                pdf_url=obj.get("invoice_pdf"),
            )
        elif event_type == "invoice.payment_failed":
            await repository.set_status(conn, workspace_id=workspace_id, status="past_due")
            await repository.insert_invoice(
                conn,
                workspace_id=workspace_id,
                stripe_invoice_id=str(obj.get("id")),
                amount_cents=int(obj.get("amount_due") or 0),
                currency=str(obj.get("currency") or "eur"),
                status="failed",
                period_start=_from_epoch(obj.get("period_start")),
                period_end=_from_epoch(obj.get("period_end")),
                pdf_url=None,
            )

    if event_type == "customer.subscription.trial_will_end":
        await _trial_ending(workspace_id, obj)

    logger.info("webhook_processed event_type=%s workspace_id=%s", event_type, workspace_id)
    return event_type


async def handle_webhook(payload: bytes, signature: str | None) -> dict:
    secret = stripe_client.webhook_secret()
    if not secret:
        logger.error("webhook_not_configured")
        raise HTTPException(status_code=500, detail="Webhook not configured.")

    try:
        event = stripe_client.construct_event(payload, signature, secret)
    except stripe_client.SignatureVerificationError as exc:
        logger.warning("webhook_signature_invalid error=%s", exc)
        monitoring.request_metrics.record_failed_webhook()
        raise HTTPException(status_code=400, detail="Invalid signature.") from exc

    try:
        await handle_event(event)
    except Exception:
        monitoring.request_metrics.record_failed_webhook()
        raise
    return {"received": True}

