"""
Pytest configuration and fixtures.
"""

import sys
from pathlib import Path
from uuid import UUID

import pytest

# The API modules import each other from the api/ root.
sys.path.insert(0, str(Path(__file__).parent.parent / "api"))

from core import middleware  # noqa: E402
from holiday_calendar import service as holidays_service  # noqa: E402

WORKSPACE_ID = UUID("7d1f4a36-5b7e-4d8a-9c4e-2f2b8a1d0c11")
OTHER_WORKSPACE_ID = UUID("0a8e5d2c-1f3b-4c6d-8e9f-a1b2c3d4e5f6")


@pytest.fixture(autouse=True)
def app_env(monkeypatch):
    """Predictable settings for every test; nothing here talks to Postgres."""
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("JOBS_ENABLED", "false")
    monkeypatch.setenv("CLIENT_URL", "http://app.test")
    for limiter in (middleware.api_limiter, middleware.auth_limiter, middleware.invite_limiter):
        limiter.reset()
    holidays_service.clear_cache()
    yield


class Recorder:
    """Async stand-in that records its calls and returns a fixed value."""

    def __init__(self, result=None):
        self.result = result
        self.calls = []

    async def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return self.result(*args, **kwargs) if callable(self.result) else self.result


@pytest.fixture
def recorder():
    return Recorder


@pytest.fixture
def membership(monkeypatch):
    """
    Replace the workspace membership lookup. Call with a role (or None for
    "not a member") to control what the access checks see.
    """
    from workspaces import repository as workspaces_repository

    def _set(role: str | None, **extra):
        async def _get_membership(user_id, workspace_id):
            if role is None:
                return None
            return {"id": 1, "user_id": user_id, "workspace_id": workspace_id, "role": role, **extra}

        monkeypatch.setattr(workspaces_repository, "get_membership", _get_membership)

    _set("member")
    return _set


@pytest.fixture
def no_side_effects(monkeypatch):
    """Silence the billing guard and activity feed for service tests."""
    from activity import service as activity
    from billing import guard

    activity_log = Recorder()
    monkeypatch.setattr(guard, "require_active_subscription", Recorder({"planId": "free", "status": "active"}))
    monkeypatch.setattr(activity, "log_activity", activity_log)
    return activity_log
