"""
Activity log and audit trail persistence.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from core import db


async def insert_activity(
    *,
    workspace_id: UUID | None,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: str | None,
    metadata: dict[str, Any],
) -> None:
    await db.execute(
        """
        INSERT INTO activity_log (workspace_id, user_id, action, entity_type, entity_id, metadata)
        VALUES ($1, $2, $3, $4, $5, $6::jsonb)
        """,
        workspace_id,
        user_id,
        action,
        entity_type,
        entity_id,
        metadata,
    )


async def list_activity(workspace_id: UUID, *, limit: int, before_id: int | None = None) -> list[dict[str, Any]]:
    return await db.fetch_all(
        """
        SELECT a.id, a.action, a.entity_type, a.entity_id, a.metadata, a.created_at,
               a.user_id, u.name AS user_name
        FROM activity_log a
        LEFT JOIN users u ON u.id = a.user_id
        WHERE a.workspace_id = $1
          AND ($2::bigint IS NULL OR a.id < $2)
        ORDER BY a.id DESC
        LIMIT $3
        """,
        workspace_id,
        before_id,
        limit,
    )


async def insert_audit(
    *,
    user_id: int | None,
    workspace_id: UUID | None,
    action: str,
    resource_type: str,
    resource_id: str | None,
    ip_address: str | None,
    user_agent: str | None,
    request_id: str | None,
) -> None:
    await db.execute(
        """
        INSERT INTO audit_logs
          (user_id, workspace_id, action, resource_type, resource_id, ip_address, user_agent, request_id)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """,
        user_id,
        workspace_id,
        action,
        resource_type,
        resource_id,
        ip_address,
        user_agent,
        request_id,
    )
