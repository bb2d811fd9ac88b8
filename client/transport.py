"""
client/transport.py -- Request transports used by ApiClient.

A transport moves one request to the server and back. It knows nothing about
tokens: ApiClient puts the Authorization header into every request's
options, and a transport only forwards headers.

  Transport        connect / request / disconnect
  DuplexTransport  Transport plus subscribe(path, handler), for persistent
                   connections that push messages to the client

HttpTransport is the requests-backed implementation. Errors from the server
come back as TransportError carrying the envelope's message, which is what
ApiClient matches to recognise an expired access token.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import requests

logger = logging.getLogger("appy.client.transport")


class TransportError(Exception):
    def __init__(self, message: str, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


@dataclass
class TransportResponse:
    payload: Any
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class Transport(Protocol):
    def connect(self, headers: dict[str, str]) -> None: ...

    def request(self, options: dict[str, Any]) -> TransportResponse: ...

    def disconnect(self) -> None: ...


@runtime_checkable
class DuplexTransport(Transport, Protocol):
    def subscribe(self, path: str, handler: Callable[[Any], None]) -> None: ...


def _error_message(payload: Any, fallback: str) -> str:
    """Pull the client-safe message out of {"error": {"message"}} or {"message"}."""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if payload.get("message"):
            return str(payload["message"])
    return fallback


class HttpTransport:
    """Transport over a pooled requests.Session.

    options keys: method (default GET), path, payload (JSON body), headers.

    HTTP has no connection-level auth: the Authorization header travels in
    each request's options and is never stored as a session default, so a
    cleared auth state stops sending the bearer immediately.
    """

    def __init__(self, base_url: str, timeout: float = 10, session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: requests.Session | None = session or self._new_session()

    @staticmethod
    def _new_session() -> requests.Session:
        session = requests.Session()
        session.max_redirects = 3
        return session

    def connect(self, headers: dict[str, str]) -> None:
        """Reopen the pool after disconnect(). headers are not retained."""
        if self._session is None:
            self._session = self._new_session()

    def request(self, options: dict[str, Any]) -> TransportResponse:
        method = options.get("method", "GET").upper()
        url = f"{self.base_url}/{options['path'].lstrip('/')}"
        if self._session is None:
            self._session = self._new_session()
        try:
            resp = self._session.request(
                method,
                url,
                json=options.get("payload"),
                headers=options.get("headers"),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise TransportError(str(exc)) from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = resp.text or None
        if resp.status_code >= 400:
            raise TransportError(_error_message(payload, resp.reason or "Request failed"), resp.status_code, payload)
        return TransportResponse(payload=payload, status_code=resp.status_code, headers=dict(resp.headers))

    def disconnect(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
