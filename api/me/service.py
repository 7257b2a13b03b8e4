"""
Current-user profile, preferences and personal task views.
"""

from __future__ import annotations

import csv
import io
import logging
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException, status

from auth import repository as auth_repository
from auth import schemas as auth_schemas
from auth import security
from auth import service as auth_service
from core import dates, sanitize

from . import repository, schemas

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("en", "es", "fr", "de", "pt", "it", "lt")
DIGEST_MODES = ("instant", "daily", "weekly", "none")
CSV_HEADER = ["Title", "Description", "Status", "Priority", "Due Date", "Completed At", "Category", "Created At"]


def to_profile_view(row: dict) -> dict:
    return {
        "id": int(row["id"]),
        "email": row["email"],
        "name": row.get("name"),
        "firstName": row.get("first_name"),
        "lastName": row.get("last_name"),
        "avatarUrl": row.get("avatar_url"),
        "role": row.get("role"),
        "language": row.get("language"),
        "timezone": row.get("timezone"),
        "emailNotificationsEnabled": bool(row.get("email_notifications_enabled")),
        "emailDigestMode": row.get("email_digest_mode"),
        "emailVerified": bool(row.get("email_verified")),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


async def _save(user_id: int, fields: dict) -> dict:
    if not fields:
        raise _bad_request("No fields to update.")
    row = await repository.update_user(user_id, fields)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    return to_profile_view(row)


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


async def get_profile(*, user_id: int) -> dict:
    row = await repository.get_profile(user_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    return to_profile_view(row)


async def update_profile(payload: schemas.ProfileUpdateRequest, *, user_id: int) -> dict:
    current = await repository.get_profile(user_id)
    if current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")

    fields: dict = {}
    for key in ("first_name", "last_name"):
        value = getattr(payload, key)
        if value is None:
            continue
        cleaned = sanitize.clean_required(value)
        if len(cleaned) < 2 or len(cleaned) > 60:
            label = "First" if key == "first_name" else "Last"
            raise _bad_request(f"{label} name must be between 2 and 60 characters.")
        fields[key] = cleaned
    if not fields:
        raise _bad_request("No fields to update.")

    first = fields.get("first_name", current.get("first_name")) or ""
    last = fields.get("last_name", current.get("last_name")) or ""
    fields["name"] = f"{first} {last}".strip() or current["name"]
    return await _save(user_id, fields)


async def update_preferences(payload: schemas.PreferencesUpdateRequest, *, user_id: int) -> dict:
    fields: dict = {}
    if payload.language is not None:
        if payload.language not in SUPPORTED_LANGUAGES:
            raise _bad_request(f"Invalid language. Must be one of: {', '.join(SUPPORTED_LANGUAGES)}.")
        fields["language"] = payload.language
    if payload.timezone is not None:
        if not is_valid_timezone(payload.timezone):
            raise _bad_request("Invalid timezone.")
        fields["timezone"] = payload.timezone
    return await _save(user_id, fields)


async def update_notifications(payload: schemas.NotificationsUpdateRequest, *, user_id: int) -> dict:
    fields: dict = {}
    if payload.email_notifications_enabled is not None:
        fields["email_notifications_enabled"] = payload.email_notifications_enabled
    if payload.email_digest_mode is not None:
        if payload.email_digest_mode not in DIGEST_MODES:
            raise _bad_request(f"Invalid digest mode. Must be one of: {', '.join(DIGEST_MODES)}.")
        fields["email_digest_mode"] = payload.email_digest_mode
    return await _save(user_id, fields)


async def _require_password(user_id: int, password: str) -> dict:
    user = await auth_repository.get_user_by_id(user_id)
    if user is None or not security.verify_password(password, str(user["password_hash"])):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect.")
    return user


async def change_password(
    payload: schemas.ChangePasswordRequest,
    *,
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> auth_schemas.TokenPairResponse:
    """
    Replaces the password, revokes every session and returns a fresh token
    pair so the caller stays signed in.
    """
    problems = security.password_problems(payload.new_password)
    if problems:
        raise _bad_request(problems[0])

    user = await _require_password(user_id, payload.current_password)
    await auth_repository.update_password(user_id, security.hash_password(payload.new_password))
    revoked = await auth_repository.revoke_all_refresh_tokens_for_user(user_id)
    logger.info("password_changed user_id=%s revoked_sessions=%s", user_id, revoked)
    return await auth_service.start_session(user, user_agent=user_agent, ip_address=ip_address)


async def delete_account(payload: schemas.DeleteAccountRequest, *, user_id: int) -> None:
    await _require_password(user_id, payload.password)
    if await repository.count_owned_shared_workspaces(user_id):
        raise _bad_request("Transfer or delete the workspaces you own before deleting your account.")
    await repository.delete_solo_workspaces(user_id)
    await repository.soft_delete_user(user_id)
    logger.info("account_deleted user_id=%s", user_id)


def _my_task_view(row: dict) -> dict:
    return {
        "id": int(row["id"]),
        "title": row["title"],
        "description": row.get("description"),
        "status": row["status"],
        "priority": row["priority"],
        "dueDate": dates.format_due_date(row.get("due_date")),
        "completedAt": row.get("completed_at"),
        "categoryId": row.get("category_id"),
        "categoryName": row.get("category_name"),
        "categoryColor": row.get("category_color"),
        "workspaceId": str(row["workspace_id"]),
        "workspaceName": row.get("workspace_name"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


async def my_tasks(
    *,
    user_id: int,
    workspace_id: UUID | None = None,
    status_filter: str | None = None,
    sort: str = "due_date",
    order: str = "asc",
    limit: int | None = None,
    offset: int = 0,
) -> dict:
    rows = await repository.list_my_tasks(
        user_id,
        workspace_id=workspace_id,
        status=status_filter,
        sort=sort,
        descending=order == "desc",
        limit=limit,
        offset=offset,
    )
    tasks = [_my_task_view(r) for r in rows]
    return {"tasks": tasks, "total": len(tasks)}


def tasks_to_csv(rows: list[dict]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in rows:
        completed_at = row.get("completed_at")
        created_at = row.get("created_at")
        writer.writerow(
            [
                row.get("title") or "",
                row.get("description") or "",
                row.get("status") or "",
                row.get("priority") or "",
                dates.format_due_date(row.get("due_date")) or "",
                completed_at.isoformat() if completed_at else "",
                row.get("category_name") or "",
                created_at.isoformat() if created_at else "",
            ]
        )
    return buffer.getvalue()


async def export_my_tasks_csv(*, user_id: int) -> tuple[str, str]:
    rows = await repository.list_my_tasks(user_id, sort="created_at")
    filename = f"todoria-tasks-{dates.today_utc().isoformat()}.csv"
    return filename, tasks_to_csv(rows)
