"""
Auth business logic.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import HTTPException, status

from core import db
from notifications import queue as email_queue
from workspaces import access
from workspaces import repository as workspaces_repository

from . import repository, schemas, security

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_user_view(user_row: dict) -> dict:
    return {
        "id": int(user_row["id"]),
        "email": str(user_row["email"]),
        "name": user_row.get("name"),
        "firstName": user_row.get("first_name"),
        "lastName": user_row.get("last_name"),
        "avatarUrl": user_row.get("avatar_url"),
        "role": user_row.get("role") or "member",
        "emailVerified": bool(user_row.get("email_verified", False)),
        "createdAt": user_row.get("created_at"),
    }


def _is_usable(user_row: dict | None) -> bool:
    return (
        user_row is not None
        and bool(user_row.get("is_active", False))
        and user_row.get("deleted_at") is None
    )


async def _issue_token_pair(
    *,
    user_row: dict,
    user_agent: str | None = None,
    ip_address: str | None = None,
    replaced_token_id: int | None = None,
) -> schemas.TokenPairResponse:
    user_id = int(user_row["id"])
    email = str(user_row["email"])

    access_token = security.build_access_token(
        user_id=user_id,
        email=email,
        role=str(user_row.get("role") or "member"),
    )
    raw_refresh_token = security.build_refresh_token()
    refresh_hash = security.hash_refresh_token(raw_refresh_token)
    expires_at = _utc_now() + timedelta(days=security.refresh_token_expire_days())

    refresh_row = await repository.insert_refresh_token(
        user_id=user_id,
        token_hash=refresh_hash,
        expires_at=expires_at,
        user_agent=user_agent,
        ip_address=ip_address,
    )

    if replaced_token_id is not None:
        await repository.set_refresh_token_replacement(
            old_token_id=replaced_token_id,
            new_token_id=int(refresh_row["id"]),
        )

    return schemas.TokenPairResponse(
        access_token=access_token,
        refresh_token=raw_refresh_token,
    )


async def start_session(user_row: dict, *, user_agent: str | None = None, ip_address: str | None = None) -> schemas.TokenPairResponse:
    """
    Fresh token pair for an already-authenticated user (e.g. after a password change).
    """
    return await _issue_token_pair(user_row=user_row, user_agent=user_agent, ip_address=ip_address)


def _validate_registration(payload: schemas.RegisterRequest) -> None:
    if not security.is_valid_email(payload.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please provide a valid email address.")

    problems = security.password_problems(payload.password)
    if problems:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must contain " + ", ".join(problems) + ".",
        )

    if not payload.tos_accepted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You must accept the Terms of Service.",
        )


async def register(
    payload: schemas.RegisterRequest,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> schemas.AuthResult:
    _validate_registration(payload)
    name = payload.name.strip()

    existing = await repository.get_user_by_email(payload.email)
    if existing is not None:
        # Same message as other failures: do not reveal which emails exist.
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unable to create account with the provided information.",
        )

    password_hash = security.hash_password(payload.password)
    verification_token = security.build_url_token()

    # User, personal workspace, admin membership and free plan are created together.
    async with db.transaction() as conn:
        user_row = await repository.create_user(
            email=payload.email,
            password_hash=password_hash,
            name=name,
            tos_accepted=payload.tos_accepted,
            conn=conn,
        )
        workspace = await workspaces_repository.create_workspace(
            name=f"{name}'s Workspace",
            owner_id=int(user_row["id"]),
            conn=conn,
        )
        await workspaces_repository.add_member(
            workspace_id=workspace["id"],
            user_id=int(user_row["id"]),
            role="admin",
            conn=conn,
        )
        await workspaces_repository.create_free_subscription(workspace_id=workspace["id"], conn=conn)
        await repository.set_email_verification_token(
            int(user_row["id"]),
            token_hash=security.hash_token(verification_token),
            expires_at=_utc_now() + timedelta(hours=security.email_verification_expire_hours()),
            conn=conn,
        )

    logger.info("user_registered user_id=%s workspace_id=%s", user_row["id"], workspace["id"])

    await email_queue.notify_welcome(to=str(user_row["email"]), user_name=name)
    await email_queue.notify_email_verification(to=str(user_row["email"]), user_name=name, token=verification_token)

    tokens = await _issue_token_pair(user_row=user_row, user_agent=user_agent, ip_address=ip_address)
    return schemas.AuthResult(
        user=to_user_view(user_row),
        tokens=tokens,
        workspace={"id": str(workspace["id"]), "name": workspace["name"]},
    )


async def login(
    payload: schemas.LoginRequest,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> schemas.AuthResult:
    user_row = await repository.get_user_by_email(payload.email)
    if user_row is None or user_row.get("deleted_at") is not None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
        )

    is_valid = security.verify_password(payload.password, str(user_row.get("password_hash") or ""))
    if not is_valid:
        logger.warning("login_failed user_id=%s", user_row["id"])
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
        )

    if not bool(user_row.get("is_active", False)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive.",
        )

    tokens = await _issue_token_pair(
        user_row=user_row,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    return schemas.AuthResult(user=to_user_view(user_row), tokens=tokens)


async def refresh_tokens(
    incoming_refresh: str | None,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> schemas.AuthResult:
    incoming_refresh = (incoming_refresh or "").strip()
    if not incoming_refresh:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No refresh token provided.",
        )

    incoming_hash = security.hash_refresh_token(incoming_refresh)
    old_token_row = await repository.get_refresh_token_by_hash(incoming_hash)
    if old_token_row is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token.",
        )

    if old_token_row.get("revoked_at") is not None:
        if old_token_row.get("replaced_by_token_id") is not None:
            # A rotated token came back: treat the whole session family as stolen.
            revoked = await repository.revoke_all_refresh_tokens_for_user(int(old_token_row["user_id"]))
            logger.warning(
                "refresh_token_reuse user_id=%s token_id=%s revoked=%s",
                old_token_row["user_id"],
                old_token_row["id"],
                revoked,
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token is revoked.",
        )

    expires_at = old_token_row.get("expires_at")
    if not isinstance(expires_at, datetime) or expires_at <= _utc_now():
        # Revoke expired token as cleanup.
        await repository.revoke_refresh_token_by_id(int(old_token_row["id"]))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token is expired.",
        )

    user_row = await repository.get_user_by_id(int(old_token_row["user_id"]))
    if not _is_usable(user_row):
        await repository.revoke_refresh_token_by_id(int(old_token_row["id"]))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token owner.",
        )

    await repository.mark_refresh_token_used(int(old_token_row["id"]))
    await repository.revoke_refresh_token_by_id(int(old_token_row["id"]))

    tokens = await _issue_token_pair(
        user_row=user_row,
        user_agent=user_agent,
        ip_address=ip_address,
        replaced_token_id=int(old_token_row["id"]),
    )
    return schemas.AuthResult(user=to_user_view(user_row), tokens=tokens)


async def logout(
    refresh_token: str | None,
    *,
    current_user_id: int | None = None,
) -> None:
    # If specific refresh token is provided, revoke only that token.
    refresh_token = (refresh_token or "").strip()
    if refresh_token:
        token_hash = security.hash_refresh_token(refresh_token)
        await repository.revoke_refresh_token_by_hash(token_hash)
        return None

    # If token is not provided, but user is authenticated, revoke all sessions.
    if current_user_id is not None:
        await repository.revoke_all_refresh_tokens_for_user(current_user_id)


async def get_user_from_access_token(access_token: str) -> dict:
    try:
        payload = security.decode_access_token(access_token)
    except security.AuthSecurityError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc

    subject = str(payload.get("sub") or "").strip()
    if not subject.isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid access token subject.",
        )

    user_row = await repository.get_user_by_id(int(subject))
    if user_row is None or user_row.get("deleted_at") is not None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found.",
        )
    if not bool(user_row.get("is_active", False)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive.",
        )
    return user_row


async def list_users(*, current_user_id: int, workspace_id: UUID | None = None) -> list[dict]:
    if workspace_id is not None:
        await access.require_member(current_user_id, workspace_id)
        rows = await repository.list_users(workspace_id=workspace_id)
    else:
        # Without a workspace the caller only sees people they share a workspace with.
        workspaces = await workspaces_repository.list_for_user(current_user_id)
        seen: dict[int, dict] = {}
        for ws in workspaces:
            for row in await repository.list_users(workspace_id=ws["id"]):
                seen.setdefault(int(row["id"]), row)
        rows = sorted(seen.values(), key=lambda r: str(r.get("name") or "").lower())
    return [
        {
            "id": int(r["id"]),
            "email": r["email"],
            "name": r.get("name"),
            "avatarUrl": r.get("avatar_url"),
            "role": r.get("role"),
        }
        for r in rows
    ]


async def forgot_password(payload: schemas.ForgotPasswordRequest) -> None:
    user_row = await repository.get_user_by_email(payload.email)
    if not _is_usable(user_row):
        # Same response either way.
        return None

    raw_token = security.build_url_token()
    await repository.set_password_reset_token(
        int(user_row["id"]),
        token_hash=security.hash_token(raw_token),
        expires_at=_utc_now() + timedelta(minutes=security.password_reset_expire_minutes()),
    )
    await email_queue.notify_password_reset(
        to=str(user_row["email"]),
        user_name=user_row.get("name"),
        token=raw_token,
    )
    logger.info("password_reset_requested user_id=%s", user_row["id"])


async def reset_password(payload: schemas.ResetPasswordRequest) -> None:
    problems = security.password_problems(payload.password)
    if problems:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Password must contain " + ", ".join(problems) + ".",
        )

    user_row = await repository.get_user_by_reset_token(security.hash_token(payload.token))
    if user_row is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token.",
        )

    await repository.update_password(int(user_row["id"]), security.hash_password(payload.password))
    await repository.revoke_all_refresh_tokens_for_user(int(user_row["id"]))
    logger.info("password_reset_completed user_id=%s", user_row["id"])


async def verify_email(payload: schemas.VerifyEmailRequest) -> dict:
    row = await repository.verify_email_by_token(security.hash_token(payload.token))
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired verification token.",
        )
    return {"id": int(row["id"]), "email": row["email"], "emailVerified": True}
