"""
Current-user API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ProfileUpdateRequest(BaseModel):
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)


class PreferencesUpdateRequest(BaseModel):
    language: str | None = None
    timezone: str | None = None


class NotificationsUpdateRequest(BaseModel):
    email_notifications_enabled: bool | None = None
    email_digest_mode: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class DeleteAccountRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)
