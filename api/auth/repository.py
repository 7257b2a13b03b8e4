"""
Auth persistence helpers: users, refresh tokens, reset/verification tokens.
"""

from __future__ import annotations

from datetime import datetime, timezone

import asyncpg

from core import db

USER_COLUMNS = """
    id, email, password_hash, name, first_name, last_name, avatar_url, role,
    is_active, language, timezone, email_notifications_enabled, email_digest_mode,
    email_verified, tos_accepted_at, deleted_at, created_at, updated_at
"""

REFRESH_COLUMNS = """
    id, user_id, token_hash, expires_at, revoked_at,
    replaced_by_token_id, created_at, last_used_at, user_agent, ip_address
"""


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


async def create_user(
    *,
    email: str,
    password_hash: str,
    name: str,
    tos_accepted: bool = False,
    conn: asyncpg.Connection | None = None,
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO users (email, password_hash, name, tos_accepted_at)
        VALUES ($1, $2, $3, CASE WHEN $4 THEN now() ELSE NULL END)
        RETURNING {USER_COLUMNS}
        """,
        normalize_email(email),
        password_hash,
        name,
        tos_accepted,
        conn=conn,
    )
    if row is None:
        raise RuntimeError("Failed to create user.")
    return row


async def get_user_by_email(email: str) -> dict | None:
    return await db.fetch_one(
        f"""
        SELECT {USER_COLUMNS}
        FROM users
        WHERE lower(email) = lower($1)
        """,
        normalize_email(email),
    )


async def get_user_by_id(user_id: int) -> dict | None:
    return await db.fetch_one(
        f"""
        SELECT {USER_COLUMNS}
        FROM users
        WHERE id = $1
        """,
        user_id,
    )


async def list_users(*, workspace_id=None) -> list[dict]:
    if workspace_id is None:
        return await db.fetch_all(
            """
            SELECT id, email, name, avatar_url, role, created_at
            FROM users
            WHERE deleted_at IS NULL
            ORDER BY name ASC
            """
        )
    return await db.fetch_all(
        """
        SELECT u.id, u.email, u.name, u.avatar_url, wm.role, u.created_at
        FROM users u
        JOIN workspace_members wm ON wm.user_id = u.id
        WHERE wm.workspace_id = $1
          AND u.deleted_at IS NULL
        ORDER BY u.name ASC
        """,
        workspace_id,
    )


async def update_password(user_id: int, password_hash: str) -> None:
    await db.execute(
        """
        UPDATE users
        SET password_hash = $2,
            password_reset_token_hash = NULL,
            password_reset_expires_at = NULL,
            updated_at = now()
        WHERE id = $1
        """,
        user_id,
        password_hash,
    )


async def set_password_reset_token(user_id: int, *, token_hash: str, expires_at: datetime) -> None:
    await db.execute(
        """
        UPDATE users
        SET password_reset_token_hash = $2,
            password_reset_expires_at = $3
        WHERE id = $1
        """,
        user_id,
        token_hash,
        _aware(expires_at),
    )


async def get_user_by_reset_token(token_hash: str) -> dict | None:
    return await db.fetch_one(
        f"""
        SELECT {USER_COLUMNS}
        FROM users
        WHERE password_reset_token_hash = $1
          AND password_reset_expires_at > now()
          AND deleted_at IS NULL
        """,
        token_hash,
    )


async def set_email_verification_token(
    user_id: int,
    *,
    token_hash: str,
    expires_at: datetime,
    conn: asyncpg.Connection | None = None,
) -> None:
    await db.execute(
        """
        UPDATE users
        SET email_verification_token_hash = $2,
            email_verification_expires_at = $3
        WHERE id = $1
        """,
        user_id,
        token_hash,
        _aware(expires_at),
        conn=conn,
    )


async def verify_email_by_token(token_hash: str) -> dict | None:
    return await db.fetch_one(
        """
        UPDATE users
        SET email_verified = TRUE,
            email_verification_token_hash = NULL,
            email_verification_expires_at = NULL,
            updated_at = now()
        WHERE email_verification_token_hash = $1
          AND email_verification_expires_at > now()
        RETURNING id, email
        """,
        token_hash,
    )


async def insert_refresh_token(
    *,
    user_id: int,
    token_hash: str,
    expires_at: datetime,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> dict:
    row = await db.fetch_one(
        f"""
        INSERT INTO refresh_tokens (user_id, token_hash, expires_at, user_agent, ip_address)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING {REFRESH_COLUMNS}
        """,
        user_id,
        token_hash,
        _aware(expires_at),
        user_agent,
        ip_address,
    )
    if row is None:
        raise RuntimeError("Failed to insert refresh token.")
    return row


async def get_refresh_token_by_hash(token_hash: str) -> dict | None:
    return await db.fetch_one(
        f"""
        SELECT {REFRESH_COLUMNS}
        FROM refresh_tokens
        WHERE token_hash = $1
        """,
        token_hash,
    )


async def mark_refresh_token_used(token_id: int) -> None:
    await db.execute(
        """
        UPDATE refresh_tokens
        SET last_used_at = now()
        WHERE id = $1
        """,
        token_id,
    )


async def revoke_refresh_token_by_hash(token_hash: str) -> bool:
    row = await db.fetch_one(
        """
        UPDATE refresh_tokens
        SET revoked_at = now()
        WHERE token_hash = $1
          AND revoked_at IS NULL
        RETURNING id
        """,
        token_hash,
    )
    return row is not None


async def revoke_refresh_token_by_id(token_id: int) -> None:
    await db.execute(
        """
        UPDATE refresh_tokens
        SET revoked_at = now()
        WHERE id = $1
          AND revoked_at IS NULL
        """,
        token_id,
    )


async def revoke_all_refresh_tokens_for_user(
    user_id: int,
    *,
    except_token_hash: str | None = None,
    conn: asyncpg.Connection | None = None,
) -> int:
    status_tag = await db.execute(
        """
        UPDATE refresh_tokens
        SET revoked_at = now()
        WHERE user_id = $1
          AND revoked_at IS NULL
          AND ($2::text IS NULL OR token_hash <> $2)
        """,
        user_id,
        except_token_hash,
        conn=conn,
    )
    return db.affected_rows(status_tag)


async def set_refresh_token_replacement(*, old_token_id: int, new_token_id: int) -> None:
    await db.execute(
        """
        UPDATE refresh_tokens
        SET replaced_by_token_id = $2
        WHERE id = $1
        """,
        old_token_id,
        new_token_id,
    )
