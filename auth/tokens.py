"""
auth/tokens.py -- JWT, password hashing, and reset-key utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with Settings.secret_key.
       Three kinds share one signing path and differ only by subject and
       expiry:
         access  -- subject is the user (sub = user id, scope, user summary)
         session -- subject is a Session (sessionId + raw sessionKey)
         refresh -- same shape as session, long-lived, session+refresh strategy
       A "type" claim keeps one kind from being replayed as another.

  Passwords and PINs: bcrypt, used directly. The _DUMMY_HASH constant
       enables timing equalization in find_by_credentials() so response time
       does not reveal whether an email is registered [C1].

  Session and reset keys: secrets.token_urlsafe(32) raw keys, stored only as
       bcrypt hashes. The raw key lives in the token handed to the client.

  Password hashes never go into a token. Session tokens are tied to the
       password in force at login through Session.password_hash, which the
       server compares on every request.

Layer rule: no imports from api/, mailer/, or client/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import ExpiredTokenError, InvalidTokenError
from auth.models import KeyHash

if TYPE_CHECKING:
    from auth.models import Session, User
    from auth.store import AuthStore
    from core.config import Settings

logger = logging.getLogger("appy.auth")

_ALGORITHM = "HS256"

TOKEN_ACCESS = "access"
TOKEN_SESSION = "session"
TOKEN_REFRESH = "refresh"
TOKEN_RESET = "reset"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password or PIN.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password fields at 255 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if plain matches the bcrypt hash. bcrypt compares in constant time."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage -- treat as a mismatch.
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("appy_timing_dummy")


def generate_key_hash() -> KeyHash:
    """Return a random single-use key and its bcrypt hash."""
    key = secrets.token_urlsafe(32)
    return KeyHash(key=key, hash=hash_password(key))


# ---------------------------------------------------------------------------
# Credential verification (constant-time) [C1]
# ---------------------------------------------------------------------------


def find_by_credentials(store: AuthStore, email: str, password: str) -> User | None:
    """Return the user whose email and password match, else None.

    Always runs bcrypt whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Account flags are NOT checked here. The login pipeline gates on them
    separately so each unusable state gets its own message.
    """
    user = store.get_by_email(email.lower())
    if user is None or not user.password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password):
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as "10m", "4h" or "730h"."""
    match = _DURATION_RE.match(value)
    if match is None:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def _sign(settings: Settings, claims: dict, expiration: str) -> str:
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = now
    payload["exp"] = now + parse_duration(expiration)
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def create_token(
    settings: Settings,
    user: User | None,
    session: Session | None,
    scope: list[str],
    expiration: str,
    *,
    session_key: str | None = None,
    session_id: int | None = None,
    kind: str | None = None,
) -> str:
    """Mint a signed token for exactly one subject: a user or a session.

    Args:
        settings:    Resolved configuration (secret key).
        user:        Subject for an access token.
        session:     Subject for a session or refresh token.
        scope:       Scope list embedded in the payload.
        expiration:  Duration string, e.g. Settings.expiration_short.
        session_key: Raw session key; required with a session.
        session_id:  Optional session reference for an access token (no key).
                     Lets logout and revocation find the session behind a
                     short-lived access token under the refresh strategy.
        kind:        TOKEN_SESSION or TOKEN_REFRESH for session subjects.
                     Defaults to TOKEN_SESSION.
    """
    if (user is None) == (session is None):
        raise ValueError("create_token() needs exactly one of user or session")

    if user is not None:
        claims = {
            "type": TOKEN_ACCESS,
            "sub": str(user.id),
            "user": {"id": user.id, "email": user.email, "role": user.role_name},
            "scope": list(scope),
        }
        if session_id is not None:
            claims["sessionId"] = session_id
    else:
        if not session_key:
            raise ValueError("create_token() needs the raw session key for a session subject")
        claims = {
            "type": kind or TOKEN_SESSION,
            "sub": f"session:{session.id}",
            "sessionId": session.id,
            "sessionKey": session_key,
            "scope": list(scope),
        }
    return _sign(settings, claims, expiration)


def create_reset_token(settings: Settings, email: str, key: str) -> str:
    """Sign the {email, key} pair mailed in a password reset link."""
    return _sign(settings, {"type": TOKEN_RESET, "email": email, "key": key}, settings.expiration_medium)


def decode_token(settings: Settings, token: str, kind: str | None = None) -> dict:
    """Verify signature and expiry; return the payload.

    Raises ExpiredTokenError if the token is well-formed but past exp, and
    InvalidTokenError for everything else (bad signature, garbage, wrong kind).
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise ExpiredTokenError(str(exc)) from exc
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    if kind is not None and payload.get("type") != kind:
        raise InvalidTokenError(f"Expected a {kind} token")
    return payload
