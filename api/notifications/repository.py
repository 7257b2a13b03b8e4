"""
Email queue persistence.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from core import db

# pg_try_advisory_lock key shared by every API process.
QUEUE_LOCK_ID = 294837


async def insert_email(
    *,
    to_email: str,
    subject: str,
    template: str,
    template_data: dict[str, Any],
    max_attempts: int = 3,
    conn: asyncpg.Connection | None = None,
) -> int:
    return int(
        await db.fetch_val(
            """
            INSERT INTO email_queue (to_email, subject, template, template_data, max_attempts)
            VALUES ($1, $2, $3, $4::jsonb, $5)
            RETURNING id
            """,
            to_email,
            subject,
            template,
            template_data,
            max_attempts,
            conn=conn,
        )
    )


async def try_lock(conn: asyncpg.Connection) -> bool:
    return bool(await conn.fetchval("SELECT pg_try_advisory_lock($1)", QUEUE_LOCK_ID))


async def unlock(conn: asyncpg.Connection) -> None:
    await conn.execute("SELECT pg_advisory_unlock($1)", QUEUE_LOCK_ID)


async def claim_pending(conn: asyncpg.Connection, *, batch_size: int) -> list[dict[str, Any]]:
    """
    Claim pending rows that still have attempts left and whose backoff window
    (2^attempts seconds since the last attempt) has passed.

    Claimed rows get `last_attempted_at = now()`, so a worker that dies
    mid-send leaves them to the normal backoff instead of resending at once.
    """
    rows = await db.fetch_all(
        """
        UPDATE email_queue
        SET last_attempted_at = now()
        WHERE id IN (
          SELECT id
          FROM email_queue
          WHERE status = 'pending'
            AND attempts < max_attempts
            AND (
              last_attempted_at IS NULL
              OR last_attempted_at < now() - (power(2, attempts) * interval '1 second')
            )
          ORDER BY created_at ASC
          LIMIT $1
          FOR UPDATE SKIP LOCKED
        )
        RETURNING id, to_email, subject, template, template_data, attempts, max_attempts, created_at
        """,
        batch_size,
        conn=conn,
    )
    return sorted(rows, key=lambda row: row["created_at"])


async def mark_sent(conn: asyncpg.Connection, email_id: int) -> None:
    await db.execute(
        """
        UPDATE email_queue
        SET status = 'sent',
            sent_at = now(),
            attempts = attempts + 1,
            last_attempted_at = now(),
            last_error = NULL
        WHERE id = $1
        """,
        email_id,
        conn=conn,
    )


async def mark_attempt_failed(conn: asyncpg.Connection, email_id: int, *, error: str) -> str:
    """
    Record a failed attempt. Returns the resulting status ('pending' or 'failed').
    """
    status = await db.fetch_val(
        """
        UPDATE email_queue
        SET attempts = attempts + 1,
            last_attempted_at = now(),
            last_error = $2,
            status = CASE WHEN attempts + 1 >= max_attempts THEN 'failed' ELSE 'pending' END
        WHERE id = $1
        RETURNING status
        """,
        email_id,
        error[:1000],
        conn=conn,
    )
    return str(status or "failed")


async def stats_last_24h() -> dict[str, int]:
    row = await db.fetch_one(
        """
        SELECT
          count(*) FILTER (WHERE status = 'pending') AS pending,
          count(*) FILTER (WHERE status = 'sent') AS sent,
          count(*) FILTER (WHERE status = 'failed') AS failed,
          count(*) FILTER (WHERE status = 'pending' AND attempts > 0) AS retrying
        FROM email_queue
        WHERE created_at > now() - interval '24 hours'
        """
    )
    row = row or {}
    return {key: int(row.get(key) or 0) for key in ("pending", "sent", "failed", "retrying")}
