"""
Tests for the API client: envelopes, CSRF handling, retries and the single
in-flight session refresh.
"""

import asyncio

import httpx
import pytest

from apiclient.client import TodoriaClient
from apiclient.errors import ApiError, SessionExpired


class FakeApi:
    """Minimal stand-in for the Todoria API behind an httpx.MockTransport."""

    def __init__(self):
        self.session_valid = True
        self.refresh_ok = True
        self.csrf_token = "csrf-1"
        self.reject_next_csrf = False
        self.fail_statuses: list[int] = []
        self.calls: list[tuple[str, str]] = []

    def count(self, method, path):
        return self.calls.count((method, path))

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        self.calls.append((request.method, path))

        if path == "/auth/csrf-token":
            return httpx.Response(200, json={"csrfToken": self.csrf_token})

        if request.method != "GET" and path not in ("/auth/login",):
            if request.headers.get("X-CSRF-Token") != self.csrf_token or self.reject_next_csrf:
                self.reject_next_csrf = False
                self.csrf_token = "csrf-2"
                return httpx.Response(403, json={"status": "error", "message": "Invalid CSRF token", "code": "CSRF_INVALID"})

        if path == "/auth/refresh":
            await asyncio.sleep(0.05)
            if not self.refresh_ok:
                return httpx.Response(401, json={"status": "error", "message": "Refresh token is revoked."})
            self.session_valid = True
            return httpx.Response(200, json={"status": "success", "data": {"token": "new-access"}})

        if path == "/auth/login":
            return httpx.Response(401, json={"status": "error", "message": "Invalid email or password."})

        if self.fail_statuses:
            return httpx.Response(self.fail_statuses.pop(0), json={"status": "error", "message": "Unavailable"})

        if not self.session_valid:
            return httpx.Response(401, json={"status": "error", "message": "Access token has expired."})

        if path == "/tasks" and request.method == "POST":
            return httpx.Response(201, json={"status": "success", "data": {"task": {"id": 1, "title": "Ship"}}})
        if path == "/tasks":
            return httpx.Response(200, json={"status": "success", "data": {"tasks": [{"id": 1}]}})
        if path == "/bad":
            return httpx.Response(400, json={"status": "error", "message": "Task title is required."})
        return httpx.Response(404, json={"status": "error", "message": "Route not found"})


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
async def client(api, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    async with TodoriaClient(
        "http://test/api",
        transport=httpx.MockTransport(api),
        retry_delay=1.0,
        sleep=fake_sleep,
    ) as c:
        yield c


class TestEnvelope:
    async def test_returns_data(self, client):
        assert await client.list_tasks("ws-1") == [{"id": 1}]

    async def test_error_envelope_becomes_api_error(self, client):
        with pytest.raises(ApiError) as exc_info:
            await client.request("GET", "/bad")
        assert exc_info.value.status == 400
        assert exc_info.value.message == "Task title is required."


class TestCsrf:
    async def test_token_is_fetched_once_before_first_write(self, client, api):
        await client.create_task("ws-1", "Ship")
        await client.create_task("ws-1", "Ship again")
        assert api.count("GET", "/auth/csrf-token") == 1
        assert api.count("POST", "/tasks") == 2

    async def test_rejected_token_is_refetched_once(self, client, api):
        await client.create_task("ws-1", "Ship")
        api.reject_next_csrf = True

        task = await client.create_task("ws-1", "Ship")

        assert task["id"] == 1
        assert api.count("GET", "/auth/csrf-token") == 2


class TestRetries:
    async def test_server_errors_are_retried_with_linear_backoff(self, client, api, sleeps):
        api.fail_statuses = [503, 502]
        assert await client.list_tasks("ws-1") == [{"id": 1}]
        assert sleeps == [1.0, 2.0]

    async def test_gives_up_after_retries(self, client, api, sleeps):
        api.fail_statuses = [503, 503, 503]
        with pytest.raises(ApiError) as exc_info:
            await client.list_tasks("ws-1")
        assert exc_info.value.status == 503
        assert len(sleeps) == 2

    async def test_client_errors_are_not_retried(self, client, sleeps):
        with pytest.raises(ApiError):
            await client.request("GET", "/bad")
        assert sleeps == []

    async def test_network_errors_are_retried(self, sleeps):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json={"status": "success", "data": {"ok": True}})

        async def fake_sleep(delay):
            sleeps.append(delay)

        async with TodoriaClient("http://test/api", transport=httpx.MockTransport(handler), sleep=fake_sleep) as c:
            assert await c.request("GET", "/health") == {"ok": True}
        assert len(attempts) == 2


class TestSessionRefresh:
    async def test_concurrent_401s_share_one_refresh(self, client, api):
        api.session_valid = False

        results = await asyncio.gather(*(client.list_tasks("ws-1") for _ in range(3)))

        assert results == [[{"id": 1}]] * 3
        assert api.count("POST", "/auth/refresh") == 1

    async def test_failed_refresh_expires_every_waiter(self, client, api):
        api.session_valid = False
        api.refresh_ok = False

        results = await asyncio.gather(*(client.list_tasks("ws-1") for _ in range(3)), return_exceptions=True)

        assert all(isinstance(r, SessionExpired) for r in results)
        assert api.count("POST", "/auth/refresh") == 1

    async def test_auth_endpoints_do_not_trigger_refresh(self, client, api):
        with pytest.raises(ApiError) as exc_info:
            await client.login(email="ana@example.com", password="wrong")
        assert not isinstance(exc_info.value, SessionExpired)
        assert exc_info.value.status == 401
        assert api.count("POST", "/auth/refresh") == 0

    async def test_bearer_token_is_replaced_after_refresh(self, client, api):
        client.use_bearer("old-access")
        api.session_valid = False
        await client.list_tasks("ws-1")
        assert client._access_token == "new-access"
