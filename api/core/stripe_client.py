"""
Stripe helpers over the official `stripe` SDK.

Used resources:
- Customer.create                 -> {"id": "cus_..."}
- checkout.Session.create         -> {"id": "cs_...", "url": "..."}
- billing_portal.Session.create   -> {"url": "..."}

The SDK is synchronous, so calls run in a worker thread. Webhook payloads are
verified with `stripe.WebhookSignature` against the `Stripe-Signature` header.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import stripe

from . import settings

SIGNATURE_TOLERANCE_S = 300


# Stripe failures are explicit and separable from other runtime errors.
class StripeError(RuntimeError):
    pass


class SignatureVerificationError(StripeError):
    pass


def secret_key() -> str:
    return settings.env_str("STRIPE_SECRET_KEY")


def webhook_secret() -> str:
    return settings.env_str("STRIPE_WEBHOOK_SECRET")


def pro_price_id() -> str:
    return settings.env_str("STRIPE_PRO_PRICE_ID")


def is_configured() -> bool:
    return bool(secret_key())


async def _call(create, **params: Any) -> dict[str, Any]:
    key = secret_key()
    if not key:
        raise StripeError("STRIPE_SECRET_KEY is not set.")
    try:
        obj = await asyncio.to_thread(create, api_key=key, **params)
    except stripe.StripeError as exc:
        raise StripeError(f"Stripe request failed: {exc}") from exc
    return dict(obj)


async def create_customer(
    *,
    email: str,
    name: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    params: dict[str, Any] = {"email": email, "metadata": metadata or {}}
    if name:
        params["name"] = name
    return await _call(stripe.Customer.create, **params)


async def create_checkout_session(
    *,
    customer_id: str,
    price_id: str,
    quantity: int,
    success_url: str,
    cancel_url: str,
    trial_days: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    subscription_data: dict[str, Any] = {"metadata": metadata or {}}
    if trial_days:
        subscription_data["trial_period_days"] = trial_days
    return await _call(
        stripe.checkout.Session.create,
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": price_id, "quantity": max(1, quantity)}],
        success_url=success_url,
        cancel_url=cancel_url,
        subscription_data=subscription_data,
        metadata=metadata or {},
    )


async def create_portal_session(*, customer_id: str, return_url: str) -> dict[str, Any]:
    return await _call(stripe.billing_portal.Session.create, customer=customer_id, return_url=return_url)


def construct_event(
    payload: bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance_s: int = SIGNATURE_TOLERANCE_S,
) -> dict[str, Any]:
    """
    Verify a webhook payload and return the decoded event.
    """
    if not secret:
        raise SignatureVerificationError("Webhook secret is not configured.")
    if not signature_header:
        raise SignatureVerificationError("Missing Stripe-Signature header.")

    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(body, signature_header, secret, tolerance=tolerance_s)
        event = json.loads(body)
    except stripe.SignatureVerificationError as exc:
        raise SignatureVerificationError(str(exc)) from exc
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SignatureVerificationError("Webhook payload is not valid JSON.") from exc
    if not isinstance(event, dict) or "type" not in event:
        raise SignatureVerificationError("Webhook payload is not a Stripe event.")
    return event
