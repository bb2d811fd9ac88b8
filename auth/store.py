"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_user / _row_to_session are the mappers.
Pipeline and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The reset_password sub-record is flattened into two nullable columns
  (reset_password_hash, reset_password_pin_required). Both are NULL when no
  reset is in flight.

  complete_password_reset() is a compare-and-set: the UPDATE only matches
  while reset_password_hash still holds the hash the caller verified, so two
  racing resets cannot both succeed with the same key.

Layer rule: no imports from api/, mailer/, or client/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import AuthAttempt, Permission, PermissionGrant, ResetPassword, Role, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(30), nullable=False, unique=True),
    Column("description", Text),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
)

_role_permissions = Table(
    "role_permissions",
    _metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id"), primary_key=True),
    Column("enabled", Integer, nullable=False, server_default="1"),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-case
    Column("password", Text),
    Column("pin", Text),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role_id", Integer, ForeignKey("roles.id")),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_enabled", Integer, nullable=False, server_default="1"),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
    Column("reset_password_hash", Text),
    Column("reset_password_pin_required", Integer),
    Column("created_at", String(32), nullable=False),
)

_user_permissions = Table(
    "user_permissions",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id"), primary_key=True),
    Column("state", String(20), nullable=False),  # Included / Excluded / Forbidden
)

_auth_attempts = Table(
    "auth_attempts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ip", String(45), nullable=False, index=True),
    Column("email", String(255), nullable=False),
    Column("time", String(32), nullable=False, index=True),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("key", Text, nullable=False),  # bcrypt hash of the raw session key
    Column("password_hash", Text),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the append-only attempt log."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _user_select():
    return select(_users, _roles.c.name.label("role_name")).select_from(
        _users.outerjoin(_roles, _users.c.role_id == _roles.c.id)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for users, roles, permissions, auth attempts, and sessions.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        role_id = store.create_role(Role(name="User"))
        store.create_user(User(email="a@b.co", password=hash_password("pw"), role_id=role_id))
        user = store.get_by_email("a@b.co")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///appy.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Roles and permissions
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_roles.insert().values(name=role.name, description=role.description))
            conn.commit()
            return result.inserted_primary_key[0]

    def ensure_roles(self, names: list[str]) -> dict[str, int]:
        """Create any missing roles. Idempotent; returns name -> id for all of them."""
        ids: dict[str, int] = {}
        for name in names:
            role = self.get_role_by_name(name)
            ids[name] = role.id if role is not None else self.create_role(Role(name=name))
        return ids

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return Role(id=row.id, name=row.name, description=row.description) if row is not None else None

    def create_permission(self, permission: Permission) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _permissions.insert().values(name=permission.name, description=permission.description)
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def grant_role_permission(self, role_id: int, permission_id: int, enabled: bool = True) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _role_permissions.insert().values(
                    role_id=role_id, permission_id=permission_id, enabled=1 if enabled else 0
                )
            )
            conn.commit()

    def set_user_permission(self, user_id: int, permission_id: int, state: str) -> None:
        """Insert or replace the user's override for one permission."""
        with self.engine.connect() as conn:
            conn.execute(
                _user_permissions.delete().where(
                    (_user_permissions.c.user_id == user_id) & (_user_permissions.c.permission_id == permission_id)
                )
            )
            conn.execute(_user_permissions.insert().values(user_id=user_id, permission_id=permission_id, state=state))
            conn.commit()

    def get_role_grants(self, role_id: int) -> list[PermissionGrant]:
        """Return the role's permissions ordered by name."""
        query = (
            select(_permissions.c.name, _role_permissions.c.enabled)
            .select_from(_role_permissions.join(_permissions, _role_permissions.c.permission_id == _permissions.c.id))
            .where(_role_permissions.c.role_id == role_id)
            .order_by(_permissions.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [PermissionGrant(name=r.name, enabled=bool(r.enabled)) for r in rows]

    def get_user_grants(self, user_id: int) -> list[PermissionGrant]:
        """Return the user's explicit permission overrides ordered by name."""
        query = (
            select(_permissions.c.name, _user_permissions.c.state)
            .select_from(_user_permissions.join(_permissions, _user_permissions.c.permission_id == _permissions.c.id))
            .where(_user_permissions.c.user_id == user_id)
            .order_by(_permissions.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [PermissionGrant(name=r.name, state=r.state) for r in rows]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        reset = user.reset_password
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.lower(),
                    password=user.password,
                    pin=user.pin,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    role_id=user.role_id,
                    is_active=1 if user.is_active else 0,
                    is_enabled=1 if user.is_enabled else 0,
                    is_deleted=1 if user.is_deleted else 0,
                    reset_password_hash=reset.hash if reset else None,
                    reset_password_pin_required=(1 if reset.pin_required else 0) if reset else None,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str, include_deleted: bool = True) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        query = _user_select().where(_users.c.email == email.lower())
        if not include_deleted:
            query = query.where(_users.c.is_deleted == 0)
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_user_select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable columns on an existing user.

        Boolean flags are converted to int for SQLite. Returns True if a row
        was updated, False if user_id was not found.
        """
        for flag in ("is_active", "is_enabled", "is_deleted"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def set_reset_password(self, user_id: int, reset: ResetPassword) -> bool:
        """Store a new in-flight reset, overwriting any previous one."""
        return self.update_user(
            user_id,
            reset_password_hash=reset.hash,
            reset_password_pin_required=1 if reset.pin_required else 0,
        )

    def complete_password_reset(self, user_id: int, expected_hash: str, password_hash: str) -> bool:
        """Replace the password and clear reset_password in one UPDATE.

        Matches only while the stored reset hash is still expected_hash.
        Returns False if another request consumed or replaced the reset first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.reset_password_hash == expected_hash))
                .values(password=password_hash, reset_password_hash=None, reset_password_pin_required=None)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Auth attempts
    # ------------------------------------------------------------------

    def create_attempt(self, attempt: AuthAttempt) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _auth_attempts.insert().values(ip=attempt.ip, email=attempt.email.lower(), time=_now_iso())
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def count_attempts(self, ip: str, since: datetime, email: str | None = None) -> int:
        """Count attempts from ip (and optionally for email) recorded at or after since."""
        query = (
            select(func.count())
            .select_from(_auth_attempts)
            .where((_auth_attempts.c.ip == ip) & (_auth_attempts.c.time >= since.isoformat(timespec="microseconds")))
        )
        if email is not None:
            query = query.where(_auth_attempts.c.email == email.lower())
        with self.engine.connect() as conn:
            result = conn.execute(query).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    key=session.key,
                    password_hash=session.password_hash,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session(self, session_id: int) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def update_session_key(self, session_id: int, key_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(key=key_hash))
            conn.commit()
        return result.rowcount > 0

    def delete_session(self, session_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    reset = None
    if row.reset_password_hash is not None:
        reset = ResetPassword(
            hash=row.reset_password_hash,
            pin_required=bool(row.reset_password_pin_required),
        )
    return User(
        id=row.id,
        email=row.email,
        password=row.password,
        pin=row.pin,
        first_name=row.first_name,
        last_name=row.last_name,
        role_id=row.role_id,
        role_name=row.role_name,
        is_active=bool(row.is_active),
        is_enabled=bool(row.is_enabled),
        is_deleted=bool(row.is_deleted),
        reset_password=reset,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        key=row.key,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )
