"""
Platform-wide counters for the admin dashboard.
"""

from __future__ import annotations

from typing import Any

from core import db


async def user_counts() -> dict[str, Any]:
    return await db.fetch_one(
        """
        SELECT
          count(*) AS total,
          count(*) FILTER (WHERE created_at > now() - interval '30 days') AS new_30d,
          count(*) FILTER (WHERE created_at > now() - interval '7 days') AS new_7d,
          count(*) FILTER (WHERE email_verified) AS verified
        FROM users
        WHERE deleted_at IS NULL
        """
    ) or {}


async def workspace_counts() -> dict[str, Any]:
    return await db.fetch_one("SELECT count(*) AS total FROM workspaces") or {}


async def task_counts() -> dict[str, Any]:
    return await db.fetch_one(
        """
        SELECT
          count(*) AS total,
          count(*) FILTER (WHERE status = 'completed') AS completed,
          count(*) FILTER (WHERE created_at > now() - interval '7 days') AS new_7d
        FROM tasks
        """
    ) or {}


async def subscription_counts() -> dict[str, Any]:
    return await db.fetch_one(
        """
        SELECT
          count(*) AS total,
          count(*) FILTER (WHERE status = 'active') AS active,
          count(*) FILTER (WHERE plan_id = 'pro') AS pro
        FROM subscriptions
        """
    ) or {}
