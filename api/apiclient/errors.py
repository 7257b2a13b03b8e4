"""
Client-side errors raised by `TodoriaClient`.
"""

from __future__ import annotations

from typing import Any


class ApiError(RuntimeError):
    def __init__(
        self,
        status: int | None,
        message: str,
        code: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.code = code
        self.data = data or {}

    @property
    def is_network_error(self) -> bool:
        return self.status is None

    def __repr__(self) -> str:
        return f"ApiError(status={self.status!r}, code={self.code!r}, message={self.message!r})"


class SessionExpired(ApiError):
    def __init__(self, message: str = "Session expired. Please log in again.") -> None:
        super().__init__(401, message, code="SESSION_EXPIRED")
