"""
auth/errors.py -- Exception taxonomy for the login and reset pipelines.

Every AuthError carries an HTTP status, a machine-readable code, and a
message that is safe to show to the client verbatim. api/main.py turns them
into the standard {"error": {"code", "message"}} envelope.

InfrastructureError never carries internal detail in its message. The cause
is chained (raise ... from exc) and logged server-side instead.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class BusinessRuleViolation(AuthError):
    """Bad credentials, locked-out client, unusable account, bad reset token or PIN."""

    status_code = 400
    code = "bad_request"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"


class InfrastructureError(AuthError):
    """Database, mail, or signing failure. Surfaces as a gateway timeout."""

    status_code = 504
    code = "gateway_timeout"

    def __init__(self, message: str = "An error occurred.") -> None:
        super().__init__(message)


class ExpiredTokenError(Exception):
    """Raised by decode_token() when the signature is valid but exp has passed."""


class InvalidTokenError(Exception):
    """Raised by decode_token() for any other verification failure."""
