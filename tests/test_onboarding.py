"""
Tests for the onboarding step rules and status view.
"""

import pytest
from fastapi import HTTPException

from onboarding import repository, service
from workspaces import repository as workspaces_repository

from conftest import WORKSPACE_ID, Recorder


class TestResolveStep:
    def test_step_number_is_named(self):
        assert service.resolve_step(2, None) == (2, "profile")

    def test_step_name_is_numbered(self):
        assert service.resolve_step(None, "roles") == (4, "roles")

    def test_explicit_name_wins(self):
        assert service.resolve_step(3, "custom") == (3, "custom")

    @pytest.mark.parametrize("step,name", [(None, None), (0, None), (6, None), (None, "unknown")])
    def test_invalid(self, step, name):
        with pytest.raises(HTTPException) as exc_info:
            service.resolve_step(step, name)
        assert exc_info.value.status_code == 400


class TestProgress:
    async def test_update_progress_advances_to_next_step(self, monkeypatch, membership):
        record = Recorder({"current_step": 3, "steps_completed": ["welcome", "profile"]})
        monkeypatch.setattr(repository, "record_step", record)

        name, view = await service.update_progress(WORKSPACE_ID, user_id=5, step=2, step_name=None)

        assert name == "profile"
        assert view == {"currentStep": 3, "stepsCompleted": ["welcome", "profile"], "totalSteps": 5}
        assert record.calls[0][1] == {"next_step": 3, "step_name": "profile"}

    async def test_current_step_is_capped(self, monkeypatch, membership):
        monkeypatch.setattr(repository, "record_step", Recorder({"current_step": 6, "steps_completed": []}))
        _, view = await service.update_progress(WORKSPACE_ID, user_id=5, step=5, step_name=None)
        assert view["currentStep"] == 5

    async def test_non_members_are_rejected(self, membership):
        membership(None)
        with pytest.raises(HTTPException) as exc_info:
            await service.start(WORKSPACE_ID, user_id=5)
        assert exc_info.value.status_code == 403


class TestStatus:
    async def test_optional_parts_fall_back(self, monkeypatch, membership):
        membership("viewer", onboarding_completed_at=None)
        monkeypatch.setattr(
            workspaces_repository,
            "get_workspace",
            Recorder({"id": WORKSPACE_ID, "name": "Acme", "owner_name": "Ana"}),
        )

        async def broken(*args, **kwargs):
            raise RuntimeError("relation does not exist")

        for name in ("get_invitation_for_user", "get_progress", "get_profile", "list_tour_members", "workspace_counts"):
            monkeypatch.setattr(repository, name, broken)

        result = await service.get_status(WORKSPACE_ID, user_id=5)

        assert result["userRole"] == "viewer"
        assert result["workspace"]["name"] == "Acme"
        assert result["workspace"]["memberCount"] == 0
        assert result["onboarding"]["isCompleted"] is False
        assert result["onboarding"]["currentStep"] == 1
        assert result["onboarding"]["steps"] == service.ONBOARDING_STEPS
        assert result["invitation"] is None
        assert result["user"] is None
        assert result["members"] == []

    async def test_missing_workspace(self, monkeypatch, membership):
        monkeypatch.setattr(workspaces_repository, "get_workspace", Recorder(None))
        with pytest.raises(HTTPException) as exc_info:
            await service.get_status(WORKSPACE_ID, user_id=5)
        assert exc_info.value.status_code == 404
