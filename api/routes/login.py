"""
api/routes/login.py -- Login, logout, and password reset endpoints.

Routes:
  POST   /login          -- credential login; response shape follows AUTH_STRATEGY
  POST   /login/forgot   -- start a password reset (auth optional)
  POST   /login/reset    -- finish a password reset with the mailed token (+ PIN)
  GET    /login/me       -- current user and scope (requires auth)
  DELETE /logout         -- end the caller's session (requires auth)

Security:
  [H2] POST /login is rate-limited per IP by slowapi, in front of the
       per-IP / per-IP+email abuse throttle inside the login pipeline.
  [C1] find_by_credentials() equalizes timing; the pipeline returns the same
       message for an unknown email and a wrong password.
  [M5] Cache-Control: no-store on every response that carries a token.

Services are built per request from app.state so the store, settings, and
mailer wired in by the lifespan (or by tests) are always the ones used.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_rate_limit
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    ResetPasswordRequest,
    UserResponse,
)
from auth.dependencies import Credentials, get_credentials, try_get_credentials
from auth.errors import InfrastructureError
from auth.login import LoginService
from auth.reset import MSG_SUCCESS, PasswordResetService
from auth.sessions import SessionManager

# Auth policy:
# - POST   /login:         public
# - POST   /login/forgot:  optional -- a Super Admin caller waives the PIN
# - POST   /login/reset:   public -- the mailed token is the credential
# - GET    /login/me:      requires auth (get_credentials)
# - DELETE /logout:        requires auth (get_credentials)
router = APIRouter()

logger = logging.getLogger("appy.api.login")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(login_rate_limit)  # [H2] below @router so the registered endpoint enforces it
async def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Authenticate with email and password.

    Errors (400): too many attempts, invalid credentials, inactive, disabled,
    or deleted account. Infrastructure failures are reported as 504.
    """
    service = LoginService(request.app.state.store, request.app.state.settings)
    result = await service.login(_client_ip(request), body.email, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return LoginResponse(
        user=UserResponse.from_user(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        scope=result.scope,
    )


@router.post("/login/forgot", response_model=MessageResponse)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    credentials: Credentials | None = Depends(try_get_credentials),
) -> MessageResponse:
    """Email a password reset link. 404 if the email is not registered."""
    service = PasswordResetService(request.app.state.store, request.app.state.settings, request.app.state.mailer)
    scope = credentials.scope if credentials else None
    return MessageResponse(message=await service.forgot_password(body.email, scope))


@router.post("/login/reset", response_model=MessageResponse)
async def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password using the mailed reset token (and PIN when required)."""
    service = PasswordResetService(request.app.state.store, request.app.state.settings, request.app.state.mailer)
    return MessageResponse(message=await service.reset_password(body.token, body.password, body.pin))


@router.get("/login/me", response_model=MeResponse)
async def me(response: Response, credentials: Credentials = Depends(get_credentials)) -> MeResponse:
    """Return the authenticated user and the scope carried by their token."""
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return MeResponse(user=UserResponse.from_user(credentials.user), scope=credentials.scope)


@router.delete("/logout", response_model=MessageResponse)
async def logout(request: Request, credentials: Credentials = Depends(get_credentials)) -> MessageResponse:
    """Delete the caller's session. A stateless token simply expires on its own."""
    if credentials.session is not None:
        sessions = SessionManager(request.app.state.store)
        try:
            await asyncio.to_thread(sessions.invalidate, credentials.session.id)
        except Exception as exc:
            logger.exception("Failed to invalidate session %s", credentials.session.id)
            raise InfrastructureError() from exc
    return MessageResponse(message=MSG_SUCCESS)
