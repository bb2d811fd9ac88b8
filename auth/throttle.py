"""
auth/throttle.py -- Failed-login throttling per IP and per IP+email.

Two ceilings are checked over a sliding lockout window:
  Settings.auth_attempts_for_ip           -- any email from one address
  Settings.auth_attempts_for_ip_and_user  -- one email from one address (stricter)

Attempts are never deleted. They simply stop counting once they are older
than Settings.lockout_period minutes.

Store errors propagate unchanged. The login pipeline maps them to a 504
without leaking detail to the client.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.models import AuthAttempt
from auth.store import AuthStore
from core.config import Settings

logger = logging.getLogger("appy.auth.throttle")


class AbuseThrottle:
    def __init__(self, store: AuthStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    def window_start(self) -> datetime:
        return datetime.now(timezone.utc) - timedelta(minutes=self.settings.lockout_period)

    def abuse_detected(self, ip: str, email: str) -> bool:
        """Return True if either ceiling has been met or exceeded."""
        since = self.window_start()
        ip_count = self.store.count_attempts(ip, since)
        ip_user_count = self.store.count_attempts(ip, since, email=email)
        detected = (
            ip_count >= self.settings.auth_attempts_for_ip
            or ip_user_count >= self.settings.auth_attempts_for_ip_and_user
        )
        if detected:
            logger.warning("Abuse detected for %s (ip=%d, ip+user=%d)", ip, ip_count, ip_user_count)
        return detected

    def create_attempt(self, ip: str, email: str) -> AuthAttempt:
        """Record one failed login."""
        attempt = AuthAttempt(ip=ip, email=email.lower())
        attempt.id = self.store.create_attempt(attempt)
        return attempt
