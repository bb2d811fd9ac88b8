"""
client/state.py -- Client-side auth state container.

ClientStore holds the auth state (user, scope, access and refresh tokens)
and the Authorization header value every request should carry. State only
changes through dispatched actions:

  auth/set_auth           {user, scope, accessToken, refreshToken}
  auth/update_tokens      {accessToken, refreshToken}
  auth/use_refresh_token  swap the Authorization header to the refresh token
  auth/clear_auth

The Authorization value switches to the refresh token only on an explicit
use_refresh_token; the next update_tokens (the server's rotated pair)
switches it back to the new access token.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("appy.client.state")


@dataclass
class AuthState:
    user: dict[str, Any] = field(default_factory=dict)
    scope: list[str] = field(default_factory=list)
    access_token: str = ""
    refresh_token: str = ""
    authorization: str | None = None


def bearer(token: str) -> str:
    return f"Bearer {token}"


class ClientStore:
    def __init__(self) -> None:
        self.auth = AuthState()
        self._actions: dict[str, Callable[..., None]] = {
            "auth/set_auth": self._set_auth,
            "auth/update_tokens": self._update_tokens,
            "auth/use_refresh_token": self._use_refresh_token,
            "auth/clear_auth": self._clear_auth,
        }

    def dispatch(self, action: str, payload: dict[str, Any] | None = None) -> None:
        try:
            handler = self._actions[action]
        except KeyError:
            raise KeyError(f"Unknown action: {action}") from None
        if payload is None:
            handler()
        else:
            handler(payload)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _update_tokens(self, data: dict[str, Any]) -> None:
        self.auth.access_token = data.get("accessToken") or ""
        self.auth.refresh_token = data.get("refreshToken") or ""
        self.auth.authorization = bearer(self.auth.access_token) if self.auth.access_token else None
        logger.debug("Tokens updated")

    def _use_refresh_token(self) -> None:
        self.auth.authorization = bearer(self.auth.refresh_token) if self.auth.refresh_token else None
        logger.debug("Using refresh token")

    def _set_auth(self, data: dict[str, Any]) -> None:
        self._update_tokens(data)
        self.auth.scope = list(data.get("scope") or [])
        self.auth.user = dict(data.get("user") or {})

    def _clear_auth(self) -> None:
        self.auth = AuthState()
        logger.debug("Clearing auth")
