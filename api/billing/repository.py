"""
Billing persistence: plans, subscriptions, invoices, usage counters.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

from core import db


async def list_active_plans() -> list[dict[str, Any]]:
    return await db.fetch_all(
        """
        SELECT id, name, price_per_seat_cents, max_members, max_tasks, features
        FROM plans
        WHERE is_active = TRUE
        ORDER BY price_per_seat_cents ASC
        """
    )


async def get_subscription(workspace_id: UUID) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT s.id, s.workspace_id, s.plan_id, s.status, s.stripe_customer_id,
               s.stripe_subscription_id, s.seat_count, s.trial_ends_at,
               s.current_period_start, s.current_period_end, s.created_at,
               p.name AS plan_name, p.price_per_seat_cents, p.max_members, p.max_tasks, p.features
        FROM subscriptions s
        JOIN plans p ON p.id = s.plan_id
        WHERE s.workspace_id = $1
        """,
        workspace_id,
    )


async def get_effective_plan(workspace_id: UUID) -> dict[str, Any] | None:
    return await db.fetch_one(
        """
        SELECT p.id AS plan_id, p.max_members, p.max_tasks, p.features
        FROM subscriptions s
        JOIN plans p ON p.id = s.plan_id
        WHERE s.workspace_id = $1
          AND s.status IN ('active', 'trialing')
        """,
        workspace_id,
    )


async def user_has_pro_workspace(user_id: int) -> bool:
    row = await db.fetch_one(
        """
        SELECT 1
        FROM subscriptions s
        JOIN workspaces w ON w.id = s.workspace_id
        WHERE w.owner_id = $1
          AND s.plan_id = 'pro'
          AND s.status IN ('active', 'trialing')
        LIMIT 1
        """,
        user_id,
    )
    return row is not None


async def count_top_level_tasks(workspace_id: UUID) -> int:
    return int(
        await db.fetch_val(
            "SELECT count(*) FROM tasks WHERE workspace_id = $1 AND parent_task_id IS NULL",
            workspace_id,
        )
        or 0
    )


async def set_customer_id(workspace_id: UUID, customer_id: str) -> None:
    await db.execute(
        """
        INSERT INTO subscriptions (workspace_id, plan_id, status, stripe_customer_id)
        VALUES ($1, 'free', 'active', $2)
        ON CONFLICT (workspace_id) DO UPDATE
        SET stripe_customer_id = EXCLUDED.stripe_customer_id, updated_at = now()
        """,
        workspace_id,
        customer_id,
    )


async def apply_stripe_subscription(
    conn: asyncpg.Connection,
    *,
    workspace_id: UUID,
    stripe_subscription_id: str,
    status: str,
    trial_ends_at: datetime | None,
    period_start: datetime | None,
    period_end: datetime | None,
    seat_count: int,
    cancel_at_period_end: bool,
) -> None:
    await db.execute(
        """
        UPDATE subscriptions
        SET plan_id = 'pro',
            stripe_subscription_id = $2,
            status = $3,
            trial_ends_at = $4,
            current_period_start = $5,
            current_period_end = $6,
            seat_count = $7,
            cancel_at_period_end = $8,
            updated_at = now()
        WHERE workspace_id = $1
        """,
        workspace_id,
        stripe_subscription_id,
        status,
        trial_ends_at,
        period_start,
        period_end,
        seat_count,
        cancel_at_period_end,
        conn=conn,
    )


async def downgrade_to_free(conn: asyncpg.Connection, *, workspace_id: UUID) -> None:
    await db.execute(
        """
        UPDATE subscriptions
        SET plan_id = 'free',
            stripe_subscription_id = NULL,
            status = 'active',
            trial_ends_at = NULL,
            current_period_start = NULL,
            current_period_end = NULL,
            cancel_at_period_end = FALSE,
            canceled_at = now(),
            updated_at = now()
        WHERE workspace_id = $1
        """,
        workspace_id,
        conn=conn,
    )


async def set_status(conn: asyncpg.Connection, *, workspace_id: UUID, status: str) -> None:
    await db.execute(
        "UPDATE subscriptions SET status = $2, updated_at = now() WHERE workspace_id = $1",
        workspace_id,
        status,
        conn=conn,
    )


async def insert_invoice(
    conn: asyncpg.Connection,
    *,
    workspace_id: UUID,
    stripe_invoice_id: str,
    amount_cents: int,
    currency: str,
    status: str,
    period_start: datetime | None,
    period_end: datetime | None,
    pdf_url: str | None,
) -> None:
    await db.execute(
        """
        INSERT INTO invoices
          (workspace_id, stripe_invoice_id, amount_cents, currency, status, period_start, period_end, pdf_url)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        ON CONFLICT (stripe_invoice_id) DO UPDATE
        SET status = EXCLUDED.status, amount_cents = EXCLUDED.amount_cents
        """,
        workspace_id,
        stripe_invoice_id,
        amount_cents,
        currency,
        status,
        period_start,
        period_end,
        pdf_url,
        conn=conn,
    )
