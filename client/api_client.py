"""
client/api_client.py -- Authenticated requests with one refresh-token retry.

ApiClient wraps a Transport and a ClientStore:

  - every request carries the store's current Authorization header
  - when the server answers "Expired Access Token", the client dispatches
    auth/use_refresh_token and resubmits that one request exactly once; a
    second failure propagates to the caller
  - rotated tokens returned in X-Access-Token / X-Refresh-Token are stored
    via auth/update_tokens, which puts the new access token back in use

There is no proactive refresh and no deduplication: several requests that
expire at the same moment each make their own refresh attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from client.state import ClientStore
from client.transport import DuplexTransport, Transport, TransportError, TransportResponse
from core.constants import EXPIRED_ACCESS_TOKEN

logger = logging.getLogger("appy.client")

ACCESS_TOKEN_HEADER = "x-access-token"
REFRESH_TOKEN_HEADER = "x-refresh-token"


class ApiClient:
    def __init__(self, transport: Transport, store: ClientStore) -> None:
        self.transport = transport
        self.store = store

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        authorization = self.store.auth.authorization
        return {"Authorization": authorization} if authorization else {}

    def connect(self) -> None:
        """Open the connection, falling back to the refresh token once if the access token expired."""
        try:
            self.transport.connect(self._auth_headers())
        except TransportError as err:
            if err.message != EXPIRED_ACCESS_TOKEN:
                raise
            self.store.dispatch("auth/use_refresh_token")
            self.transport.disconnect()
            self.transport.connect(self._auth_headers())

    def disconnect(self) -> None:
        self.transport.disconnect()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _send(self, options: dict[str, Any]) -> TransportResponse:
        headers = {**options.get("headers", {}), **self._auth_headers()}
        response = self.transport.request({**options, "headers": headers})
        self._store_rotated_tokens(response)
        return response

    def request(self, options: dict[str, Any]) -> TransportResponse:
        try:
            return self._send(options)
        except TransportError as err:
            if err.message != EXPIRED_ACCESS_TOKEN:
                raise
            logger.info("Access token expired; retrying %s with refresh token", options.get("path"))
        self.store.dispatch("auth/use_refresh_token")
        return self._send(options)

    def _store_rotated_tokens(self, response: TransportResponse) -> None:
        headers = {k.lower(): v for k, v in (response.headers or {}).items()}
        access, refresh = headers.get(ACCESS_TOKEN_HEADER), headers.get(REFRESH_TOKEN_HEADER)
        if access and refresh:
            self.store.dispatch("auth/update_tokens", {"accessToken": access, "refreshToken": refresh})

    def subscribe(self, path: str, handler: Callable[[Any], None]) -> None:
        if not isinstance(self.transport, DuplexTransport):
            raise TypeError(f"{type(self.transport).__name__} does not support subscriptions")
        self.transport.subscribe(path, handler)

    # ------------------------------------------------------------------
    # Auth endpoints
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> dict[str, Any]:
        response = self.request({"method": "POST", "path": "/login", "payload": {"email": email, "password": password}})
        self.store.dispatch("auth/set_auth", response.payload)
        return response.payload

    def logout(self) -> None:
        try:
            self.request({"method": "DELETE", "path": "/logout"})
        finally:
            self.store.dispatch("auth/clear_auth")
