"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

The token accepted depends on Settings.auth_strategy:

  standard-jwt      access token; the user must still be active, enabled and
                    not deleted.
  jwt-with-session  session token; its session must exist, its raw key must
                    match the session's key hash, and the owner's password
                    must be unchanged since login.
  jwt-with-session-and-refresh-token
                    access token as in standard-jwt (plus its session must
                    still exist). An expired access token is answered with
                    401 "Expired Access Token" so the client can retry with
                    its refresh token. A refresh token is checked like a
                    session token, the session key is rotated, and a fresh
                    access/refresh pair goes back in the X-Access-Token /
                    X-Refresh-Token response headers.

try_get_credentials() is the soft variant (returns None for a missing or
rejected token) used by routes where auth is optional. get_credentials()
raises 401. Both report store or hashing failures as a 504.

auth/dependencies.py may import from fastapi because it is part of the
FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request, Response
from jose import JWTError, jwt

from auth.errors import AuthError, ExpiredTokenError, InfrastructureError, InvalidTokenError, UnauthorizedError
from auth.models import Session, User
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.tokens import TOKEN_ACCESS, TOKEN_REFRESH, TOKEN_SESSION, create_token, decode_token
from core.config import Settings
from core.constants import EXPIRED_ACCESS_TOKEN, AuthStrategy

logger = logging.getLogger("appy.auth.dependencies")

ACCESS_TOKEN_HEADER = "X-Access-Token"
REFRESH_TOKEN_HEADER = "X-Refresh-Token"

MSG_AUTH_REQUIRED = "Authentication required."
MSG_INVALID_TOKEN = "Invalid token."
MSG_EXPIRED_REFRESH_TOKEN = "Expired Refresh Token"

_ACCEPTED_KINDS = {
    AuthStrategy.TOKEN: {TOKEN_ACCESS},
    AuthStrategy.SESSION: {TOKEN_SESSION},
    AuthStrategy.REFRESH: {TOKEN_ACCESS, TOKEN_REFRESH},
}


@dataclass
class Credentials:
    user: User
    scope: list[str]
    session: Session | None = None
    access_token: str | None = None
    refresh_token: str | None = None


def _extract_bearer(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        return auth_header[7:].strip() or None
    return None


def _unverified_kind(token: str) -> str | None:
    try:
        return jwt.get_unverified_claims(token).get("type")
    except JWTError:
        return None


def _usable(user: User | None) -> bool:
    return user is not None and user.is_active and user.is_enabled and not user.is_deleted


def resolve_credentials(token: str, store: AuthStore, settings: Settings) -> Credentials:
    """Verify token under the configured strategy. Raises UnauthorizedError."""
    strategy = settings.auth_strategy
    try:
        payload = decode_token(settings, token)
    except ExpiredTokenError as exc:
        kind = _unverified_kind(token)
        if strategy == AuthStrategy.REFRESH and kind == TOKEN_ACCESS:
            raise UnauthorizedError(EXPIRED_ACCESS_TOKEN, code="expired_access_token") from exc
        if kind == TOKEN_REFRESH:
            raise UnauthorizedError(MSG_EXPIRED_REFRESH_TOKEN, code="expired_refresh_token") from exc
        raise UnauthorizedError(MSG_INVALID_TOKEN, code="invalid_token") from exc
    except InvalidTokenError as exc:
        raise UnauthorizedError(MSG_INVALID_TOKEN, code="invalid_token") from exc

    kind = payload.get("type")
    if kind not in _ACCEPTED_KINDS[strategy]:
        raise UnauthorizedError(MSG_INVALID_TOKEN, code="invalid_token")
    scope = list(payload.get("scope") or [])

    if kind == TOKEN_ACCESS:
        try:
            user = store.get_by_id(int(payload["sub"]))
        except (KeyError, ValueError) as exc:
            raise UnauthorizedError(MSG_INVALID_TOKEN, code="invalid_token") from exc
        if not _usable(user):
            raise UnauthorizedError(MSG_INVALID_TOKEN, code="invalid_token")
        session = None
        if payload.get("sessionId") is not None:
            session = store.get_session(payload["sessionId"])
            if session is None or session.user_id != user.id or session.password_hash != user.password:
                raise UnauthorizedError(MSG_INVALID_TOKEN, code="invalid_token")
        return Credentials(user=user, scope=scope, session=session)

    sessions = SessionManager(store)
    found = sessions.find_valid(payload.get("sessionId"), payload.get("sessionKey") or "")
    if found is None or not _usable(found[1]):
        raise UnauthorizedError(MSG_INVALID_TOKEN, code="invalid_token")
    session, user = found
    credentials = Credentials(user=user, scope=scope, session=session)

    if kind == TOKEN_REFRESH:
        new_key = sessions.rotate(session)
        periods = settings.expiration_period
        credentials.access_token = create_token(
            settings, user, None, scope, periods["short"], session_id=session.id
        )
        credentials.refresh_token = create_token(
            settings, None, session, scope, periods["long"], session_key=new_key, kind=TOKEN_REFRESH
        )
        logger.info("Session %s rotated via refresh token", session.id)
    return credentials


def _resolve(request: Request, token: str) -> Credentials:
    """resolve_credentials() with store and bcrypt failures mapped to a 504."""
    try:
        return resolve_credentials(token, request.app.state.store, request.app.state.settings)
    except AuthError:
        raise
    except Exception as exc:
        logger.exception("Authentication failed on %s %s", request.method, request.url.path)
        raise InfrastructureError() from exc


def try_get_credentials(request: Request) -> Credentials | None:
    """Authenticate the request if it carries a usable bearer token, else None.

    A missing or rejected token yields None; an infrastructure failure still
    raises InfrastructureError. Refresh tokens are ignored so an optional-auth
    route never rotates a session behind the client's back.
    """
    token = _extract_bearer(request)
    if not token or _unverified_kind(token) == TOKEN_REFRESH:
        return None
    try:
        return _resolve(request, token)
    except UnauthorizedError:
        return None


def get_credentials(request: Request, response: Response) -> Credentials:
    """Require authentication. Raises 401 if the request is not authenticated.

    When a refresh token was presented, the rotated tokens are written to
    the response headers.
    """
    token = _extract_bearer(request)
    if not token:
        raise UnauthorizedError(MSG_AUTH_REQUIRED)
    credentials = _resolve(request, token)
    if credentials.access_token:
        response.headers[ACCESS_TOKEN_HEADER] = credentials.access_token
    if credentials.refresh_token:
        response.headers[REFRESH_TOKEN_HEADER] = credentials.refresh_token
    return credentials
