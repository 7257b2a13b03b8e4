"""
Success envelope used by every JSON endpoint.
"""

from __future__ import annotations

from typing import Any


def success(data: Any = None, *, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"status": "success"}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
