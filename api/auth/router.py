"""
Auth API endpoints.

Sessions are carried in httpOnly cookies:
- `token`: short-lived access JWT
- `refreshToken`: opaque rotating refresh token, scoped to /api/auth
The access token is also returned in the body for bearer clients.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Cookie, Depends, Query, Request, Response, status

from core import middleware, responses, settings

from . import csrf, dependencies, schemas, security, service

router = APIRouter(prefix="/api/auth")

REFRESH_COOKIE = "refreshToken"
REFRESH_COOKIE_PATH = "/api/auth"


def _client_meta(request: Request) -> dict:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": middleware.client_ip(request),
    }


def set_auth_cookies(response: Response, tokens: schemas.TokenPairResponse) -> None:
    secure = settings.is_production()
    response.set_cookie(
        dependencies.ACCESS_COOKIE,
        tokens.access_token,
        max_age=security.access_token_expire_minutes() * 60,
        httponly=True,
        secure=secure,
        samesite="strict",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        max_age=security.refresh_token_expire_days() * 24 * 60 * 60,
        httponly=True,
        secure=secure,
        samesite="strict",
        path=REFRESH_COOKIE_PATH,
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(dependencies.ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(middleware.auth_limiter)],
)
async def register(payload: schemas.RegisterRequest, request: Request, response: Response) -> dict:
    result = await service.register(payload, **_client_meta(request))
    set_auth_cookies(response, result.tokens)
    return responses.success(
        {"user": result.user, "workspace": result.workspace, "token": result.tokens.access_token},
        message="User registered successfully",
    )


@router.post("/login", dependencies=[Depends(middleware.auth_limiter)])
async def login(payload: schemas.LoginRequest, request: Request, response: Response) -> dict:
    result = await service.login(payload, **_client_meta(request))
    set_auth_cookies(response, result.tokens)
    return responses.success(
        {"user": result.user, "token": result.tokens.access_token},
        message="Login successful",
    )


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    payload: schemas.RefreshRequest | None = None,
    refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
) -> dict:
    incoming = refresh_cookie or (payload.refresh_token if payload else None)
    result = await service.refresh_tokens(incoming, **_client_meta(request))
    set_auth_cookies(response, result.tokens)
    return responses.success({"token": result.tokens.access_token, "refreshToken": result.tokens.refresh_token})


@router.post("/logout")
async def logout(
    response: Response,
    payload: schemas.LogoutRequest | None = None,
    refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
    current_user: dict | None = Depends(dependencies.get_optional_user),
) -> dict:
    await service.logout(
        refresh_cookie or (payload.refresh_token if payload else None),
        current_user_id=int(current_user["id"]) if current_user else None,
    )
    clear_auth_cookies(response)
    return responses.success(message="Logged out successfully")


@router.get("/me")
async def me(current_user: dict = Depends(dependencies.get_current_user)) -> dict:
    return responses.success({"user": service.to_user_view(current_user)})


@router.get("/users")
async def list_users(
    workspace_id: UUID | None = Query(default=None),
    current_user: dict = Depends(dependencies.get_current_user),
) -> dict:
    users = await service.list_users(current_user_id=int(current_user["id"]), workspace_id=workspace_id)
    return responses.success({"users": users})


@router.get("/csrf-token")
async def csrf_token(response: Response) -> dict:
    token = csrf.generate_token()
    csrf.set_cookie(response, token)
    return {"csrfToken": token}


@router.post("/forgot-password", dependencies=[Depends(middleware.auth_limiter)])
async def forgot_password(payload: schemas.ForgotPasswordRequest) -> dict:
    await service.forgot_password(payload)
    return responses.success(message="If an account exists for that email, a reset link has been sent.")


@router.post("/reset-password")
async def reset_password(payload: schemas.ResetPasswordRequest, response: Response) -> dict:
    await service.reset_password(payload)
    clear_auth_cookies(response)
    return responses.success(message="Password has been reset. Please log in.")


@router.post("/verify-email")
async def verify_email(payload: schemas.VerifyEmailRequest) -> dict:
    data = await service.verify_email(payload)
    return responses.success(data, message="Email verified")
