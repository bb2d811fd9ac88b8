"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the login /
reset pipelines do the work; these classes only own the shape.

Layer rule: no imports from api/, mailer/, or client/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ResetPassword:
    """The single in-flight password reset for a user.

    hash is bcrypt(raw reset key). The raw key is never persisted -- it only
    exists inside the signed token mailed to the user. A new forgot-password
    request overwrites this record.
    """

    hash: str
    pin_required: bool = True


@dataclass
class User:
    """An identity record.

    password and pin hold bcrypt hashes. Users are never physically deleted;
    is_deleted is the soft-delete flag. role_name is denormalized from the
    roles table on read so scope resolution does not need a second lookup.
    """

    email: str
    id: int | None = None
    password: str | None = None
    pin: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role_id: int | None = None
    role_name: str | None = None
    is_active: bool = True
    is_enabled: bool = True
    is_deleted: bool = False
    reset_password: ResetPassword | None = None
    created_at: str | None = None


@dataclass
class Role:
    name: str  # "User", "Admin", "Super Admin"
    id: int | None = None
    description: str | None = None


@dataclass
class Permission:
    name: str
    id: int | None = None
    description: str | None = None


@dataclass
class PermissionGrant:
    """A permission as it applies to one user, from either the role or the user.

    For role grants, state is None and enabled decides allow/deny.
    For user overrides, state is one of PermissionState and takes precedence.
    """

    name: str
    enabled: bool = True
    state: str | None = None


@dataclass
class AuthAttempt:
    """A failed login. Append-only; aged out by time, never deleted."""

    ip: str
    email: str
    id: int | None = None
    time: str | None = None


@dataclass
class Session:
    """Server-side session for the session-based strategies.

    key is bcrypt(raw session key); the raw key travels only inside the
    session/refresh token. password_hash snapshots the user's password hash
    at creation so a password change invalidates every outstanding session.
    """

    user_id: int
    key: str
    password_hash: str | None = None
    id: int | None = None
    created_at: str | None = None


@dataclass
class KeyHash:
    """A freshly generated secret and its bcrypt hash."""

    key: str
    hash: str = field(repr=False)
