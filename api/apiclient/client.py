"""
Async HTTP client for the Todoria API.

- Cookies (access, refresh, CSRF) live in the underlying httpx cookie jar.
- Unsafe requests carry `X-CSRF-Token`; the token is fetched lazily and
  refetched once when the server answers 403 CSRF_INVALID.
- A 401 from a non-auth endpoint triggers a token refresh. Only one refresh
  request is in flight at a time: concurrent callers await the same one and
  replay their request after it succeeds, or all fail with SessionExpired.
- `safe_call` retries network errors and 429/5xx with linear backoff.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from .errors import ApiError, SessionExpired

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
CSRF_HEADER = "X-CSRF-Token"
# Failures on these are credential problems, not session expiry.
AUTH_ENDPOINTS = ("/auth/login", "/auth/register", "/auth/logout", "/auth/refresh", "/auth/csrf-token")


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        cleaned[key] = value
    return cleaned or None


def _error_from_response(resp: httpx.Response) -> ApiError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = str(body.get("message") or resp.reason_phrase or f"HTTP {resp.status_code}")
    return ApiError(resp.status_code, message, code=body.get("code"), data=body)


class TodoriaClient:
    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retries: int = 2,
        retry_delay: float = 0.3,
        timeout_s: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.retries = max(retries, 0)
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._http = httpx.AsyncClient(base_url=base_url.rstrip("/"), transport=transport, timeout=timeout_s)
        self._csrf_token: str | None = None
        self._access_token: str | None = None
        self._refresh_task: asyncio.Task | None = None

    async def __aenter__(self) -> "TodoriaClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- transport -----------------------------------------------------------

    async def safe_call(self, fn: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await fn()
            except ApiError as exc:
                retryable = exc.is_network_error or exc.status in RETRYABLE_STATUSES
                if not retryable or attempt >= self.retries:
                    raise
            attempt += 1
            await self._sleep(self.retry_delay * attempt)

    async def fetch_csrf_token(self) -> str:
        resp = await self._send_raw("GET", "/auth/csrf-token")
        if resp.status_code != 200:
            raise _error_from_response(resp)
        self._csrf_token = str(resp.json().get("csrfToken") or "")
        return self._csrf_token

    async def _send_raw(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {}
        if method in UNSAFE_METHODS and self._csrf_token:
            headers[CSRF_HEADER] = self._csrf_token
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        try:
            return await self._http.request(method, path, json=json, params=_clean_params(params), headers=headers)
        except httpx.TransportError as exc:
            raise ApiError(None, f"Network error: {exc}") from exc

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if method in UNSAFE_METHODS and not self._csrf_token:
            await self.fetch_csrf_token()

        resp = await self._send_raw(method, path, **kwargs)

        if resp.status_code == 403 and method in UNSAFE_METHODS:
            error = _error_from_response(resp)
            if error.code == "CSRF_INVALID":
                await self.fetch_csrf_token()
                resp = await self._send_raw(method, path, **kwargs)

        if resp.status_code == 401 and not path.startswith(AUTH_ENDPOINTS):
            await self._refresh_once()
            resp = await self._send_raw(method, path, **kwargs)
            if resp.status_code == 401:
                raise SessionExpired()

        if resp.status_code >= 400:
            raise _error_from_response(resp)
        return resp

    async def _refresh_once(self) -> None:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        # Shield so a cancelled waiter does not cancel the shared refresh.
        ok = await asyncio.shield(self._refresh_task)
        if not ok:
            raise SessionExpired()

    async def _do_refresh(self) -> bool:
        try:
            if not self._csrf_token:
                await self.fetch_csrf_token()
            resp = await self._send_raw("POST", "/auth/refresh")
        except ApiError:
            logger.warning("session_refresh_failed reason=network")
            return False
        if resp.status_code != 200:
            logger.info("session_refresh_failed status=%s", resp.status_code)
            self._access_token = None
            return False
        token = (resp.json().get("data") or {}).get("token")
        if token and self._access_token:
            self._access_token = token
        return True

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Send a request through `safe_call` and return the envelope's `data`
        (or the whole body when there is none).
        """
        method = method.upper()
        resp = await self.safe_call(lambda: self._send(method, path, json=json, params=params))
        if not resp.content:
            return None
        if "application/json" not in resp.headers.get("content-type", ""):
            return resp.text
        body = resp.json()
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    def use_bearer(self, token: str | None) -> None:
        """
        Send `Authorization: Bearer` on every request instead of relying on
        the session cookie.
        """
        self._access_token = token

    # -- auth ----------------------------------------------------------------

    async def register(self, *, email: str, password: str, name: str, tos_accepted: bool = True) -> dict:
        return await self.request(
            "POST",
            "/auth/register",
            json={"email": email, "password": password, "name": name, "tos_accepted": tos_accepted},
        )

    async def login(self, *, email: str, password: str) -> dict:
        return await self.request("POST", "/auth/login", json={"email": email, "password": password})

    async def logout(self) -> None:
        await self.request("POST", "/auth/logout")
        self._access_token = None

    async def current_user(self) -> dict:
        return (await self.request("GET", "/auth/me"))["user"]

    # -- tasks ---------------------------------------------------------------

    async def list_tasks(self, workspace_id: str, **filters: Any) -> list[dict]:
        data = await self.request("GET", "/tasks", params={"workspace_id": workspace_id, **filters})
        return data["tasks"]

    async def get_task(self, task_id: int) -> dict:
        return (await self.request("GET", f"/tasks/{task_id}"))["task"]

    async def list_subtasks(self, task_id: int) -> list[dict]:
        return (await self.request("GET", f"/tasks/{task_id}/subtasks"))["subtasks"]

    async def create_task(self, workspace_id: str, title: str, **fields: Any) -> dict:
        body = {"workspace_id": workspace_id, "title": title, **fields}
        return (await self.request("POST", "/tasks", json=body))["task"]

    async def update_task(self, task_id: int, **fields: Any) -> dict:
        return (await self.request("PUT", f"/tasks/{task_id}", json=fields))["task"]

    async def move_task(self, task_id: int, *, position: int, category_id: int | None = None) -> dict:
        body: dict[str, Any] = {"position": position}
        if category_id is not None:
            body["category_id"] = category_id
        return (await self.request("PATCH", f"/tasks/{task_id}/position", json=body))["task"]

    async def delete_task(self, task_id: int) -> None:
        await self.request("DELETE", f"/tasks/{task_id}")

    # -- categories ----------------------------------------------------------

    async def list_categories(self, workspace_id: str) -> list[dict]:
        return (await self.request("GET", "/categories", params={"workspace_id": workspace_id}))["categories"]

    async def create_category(self, workspace_id: str, name: str, color: str | None = None) -> dict:
        body: dict[str, Any] = {"workspace_id": workspace_id, "name": name}
        if color:
            body["color"] = color
        return (await self.request("POST", "/categories", json=body))["category"]

    async def update_category(self, category_id: int, **fields: Any) -> dict:
        return (await self.request("PUT", f"/categories/{category_id}", json=fields))["category"]

    async def delete_category(self, category_id: int) -> None:
        await self.request("DELETE", f"/categories/{category_id}")

    async def reorder_categories(self, workspace_id: str, category_ids: list[int]) -> list[dict]:
        body = {"workspace_id": workspace_id, "category_ids": category_ids}
        return (await self.request("PATCH", "/categories/reorder", json=body))["categories"]

    # -- comments ------------------------------------------------------------

    async def list_comments(self, task_id: int, *, cursor: int | None = None, limit: int = 20) -> dict:
        return await self.request("GET", f"/tasks/{task_id}/comments", params={"cursor": cursor, "limit": limit})

    async def add_comment(self, task_id: int, content: str) -> dict:
        return (await self.request("POST", f"/tasks/{task_id}/comments", json={"content": content}))["comment"]

    async def update_comment(self, comment_id: int, content: str) -> dict:
        return (await self.request("PUT", f"/comments/{comment_id}", json={"content": content}))["comment"]

    async def delete_comment(self, comment_id: int) -> None:
        await self.request("DELETE", f"/comments/{comment_id}")

    # -- workspaces ----------------------------------------------------------

    async def list_workspaces(self) -> list[dict]:
        return (await self.request("GET", "/workspaces"))["workspaces"]

    async def create_workspace(self, name: str) -> dict:
        return (await self.request("POST", "/workspaces", json={"name": name}))["workspace"]

    async def list_members(self, workspace_id: str) -> list[dict]:
        return (await self.request("GET", f"/workspaces/{workspace_id}/members"))["members"]

    async def invite(self, workspace_id: str, email: str, role: str = "member") -> dict:
        body = {"email": email, "role": role}
        return (await self.request("POST", f"/workspaces/{workspace_id}/invite", json=body))["invitation"]

    async def accept_invite(self, token: str) -> dict:
        return await self.request("POST", f"/workspaces/accept-invite/{token}")

    async def onboarding_status(self, workspace_id: str) -> dict:
        return await self.request("GET", f"/workspaces/{workspace_id}/onboarding")

    async def onboarding_progress(self, workspace_id: str, *, step: int | None = None, step_name: str | None = None) -> dict:
        body = {"step": step, "step_name": step_name}
        return (await self.request("PUT", f"/workspaces/{workspace_id}/onboarding/progress", json=body))["progress"]

    # -- me / billing --------------------------------------------------------

    async def my_profile(self) -> dict:
        return (await self.request("GET", "/me"))["user"]

    async def my_tasks(self, **params: Any) -> dict:
        return await self.request("GET", "/me/tasks", params=params)

    async def export_my_tasks(self) -> str:
        return await self.request("GET", "/me/tasks/export")

    async def plans(self) -> list[dict]:
        return (await self.request("GET", "/billing/plans"))["plans"]

    async def subscription(self, workspace_id: str) -> dict:
        return await self.request("GET", "/billing/subscription", params={"workspace_id": workspace_id})
