"""
Data retention cleanup.

- invitations that expired more than 30 days ago are deleted
- audit rows older than two years lose their user, IP and user agent
- used or revoked refresh tokens older than 30 days are deleted
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from core import db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionResult:
    deleted_invites: int
    anonymized_logs: int
    deleted_refresh_tokens: int

    def to_dict(self) -> dict:
        return {
            "deletedInvites": self.deleted_invites,
            "anonymizedLogs": self.anonymized_logs,
            "deletedRefreshTokens": self.deleted_refresh_tokens,
        }


async def run_retention_cleanup() -> RetentionResult:
    async with db.transaction() as conn:
        invites = await db.execute(
            "DELETE FROM workspace_invitations WHERE expires_at < now() - interval '30 days'",
            conn=conn,
        )
        audit = await db.execute(
            """
            UPDATE audit_logs
            SET user_id = NULL, ip_address = NULL, user_agent = NULL
            WHERE created_at < now() - interval '2 years'
              AND (user_id IS NOT NULL OR ip_address IS NOT NULL OR user_agent IS NOT NULL)
            """,
            conn=conn,
        )
        tokens = await db.execute(
            """
            DELETE FROM refresh_tokens
            WHERE (revoked_at IS NOT NULL OR expires_at < now())
              AND created_at < now() - interval '30 days'
            """,
            conn=conn,
        )

    result = RetentionResult(
        deleted_invites=db.affected_rows(invites),
        anonymized_logs=db.affected_rows(audit),
        deleted_refresh_tokens=db.affected_rows(tokens),
    )
    logger.info("retention_cleanup_done %s", " ".join(f"{k}={v}" for k, v in asdict(result).items()))
    return result
