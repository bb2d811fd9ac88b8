"""
auth/sessions.py -- Server-side sessions for the session-based strategies.

A session stores bcrypt(raw key) and a snapshot of the owner's password
hash. The raw key only ever leaves the server inside a session or refresh
token. A session stays valid while:
  - the row exists (logout deletes it)
  - the token's raw key matches the stored hash (rotation replaces it)
  - the owner's current password hash equals the snapshot (a password
    reset therefore ends every outstanding session)
"""

from __future__ import annotations

import logging

from auth.models import Session, User
from auth.store import AuthStore
from auth.tokens import generate_key_hash, verify_password

logger = logging.getLogger("appy.auth.sessions")


class SessionManager:
    def __init__(self, store: AuthStore) -> None:
        self.store = store

    def create_session(self, user: User) -> tuple[Session, str]:
        """Create a session for user. Returns (session, raw key)."""
        key_hash = generate_key_hash()
        session = Session(user_id=user.id, key=key_hash.hash, password_hash=user.password)
        session.id = self.store.create_session(session)
        logger.info("Session %s created for user %s", session.id, user.id)
        return session, key_hash.key

    def find_valid(self, session_id: int, raw_key: str) -> tuple[Session, User] | None:
        """Return (session, owner) if the session is still usable, else None."""
        session = self.store.get_session(session_id)
        if session is None or not verify_password(raw_key, session.key):
            return None
        user = self.store.get_by_id(session.user_id)
        if user is None or user.password != session.password_hash:
            return None
        return session, user

    def rotate(self, session: Session) -> str:
        """Replace the session key. Tokens carrying the old key stop working."""
        key_hash = generate_key_hash()
        self.store.update_session_key(session.id, key_hash.hash)
        session.key = key_hash.hash
        return key_hash.key

    def invalidate(self, session_id: int) -> bool:
        deleted = self.store.delete_session(session_id)
        if deleted:
            logger.info("Session %s invalidated", session_id)
        return deleted
