"""
Auth dependencies for protected FastAPI routes.

The browser client authenticates with the httpOnly `token` cookie; other
clients send `Authorization: Bearer <token>`.
"""

from __future__ import annotations

from fastapi import Cookie, Depends, Header, HTTPException, status

from . import service

ACCESS_COOKIE = "token"


def _extract_bearer_token(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    if not raw:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated. Please log in.",
        )

    parts = raw.split(" ", 1)
    if len(parts) != 2:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format.",
        )

    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization must be: Bearer <token>.",
        )
    return token


async def get_access_token(
    access_cookie: str | None = Cookie(default=None, alias=ACCESS_COOKIE),
    authorization: str | None = Header(default=None),
) -> str:
    if access_cookie and access_cookie.strip():
        return access_cookie.strip()
    return _extract_bearer_token(authorization)


async def get_current_user(access_token: str = Depends(get_access_token)) -> dict:
    return await service.get_user_from_access_token(access_token)


async def get_optional_user(
    access_cookie: str | None = Cookie(default=None, alias=ACCESS_COOKIE),
    authorization: str | None = Header(default=None),
) -> dict | None:
    try:
        access_token = await get_access_token(access_cookie, authorization)
        return await service.get_user_from_access_token(access_token)
    except HTTPException:
        return None


async def require_platform_admin(current_user: dict = Depends(get_current_user)) -> dict:
    if str(current_user.get("role") or "") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
    return current_user
