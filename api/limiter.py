"""
api/limiter.py -- Transport-level rate limiting for the auth endpoints.

One shared slowapi Limiter is mounted by api/main.py (SlowAPIMiddleware plus
app.state.limiter) and applied per route in api/routes/login.py. A second
instance would keep its own counters and its limits would never trigger.

This limit is a blunt per-address brake in front of POST /login. Lockout by
failed attempts is the abuse throttle's job (auth/throttle.py), which is
what produces the "Maximum number of auth attempts reached" error.

slowapi evaluates limit callables without the request, so the limit string
cannot be read from app.state. configure_limits() copies it out of the
Settings the lifespan resolved; it is not looked up again per request.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import Settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

_login_limit = Settings.model_fields["login_rate_limit"].default


def configure_limits(settings: Settings) -> None:
    """Adopt the limits from the Settings resolved at startup."""
    global _login_limit
    _login_limit = settings.login_rate_limit


def login_rate_limit() -> str:
    """Limit string for POST /login, e.g. "30/minute"."""
    return _login_limit
