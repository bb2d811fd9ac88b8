"""
auth/reset.py -- Forgot-password and reset-password flows.

Forgot (phase 1):
  user -> reset_record -> send_email

  An unknown email gets a 404. This reveals whether an account exists; for
  higher-security deployments respond with success either way. See:
    https://postmarkapp.com/guides/password-reset-email-best-practices
    https://security.stackexchange.com/questions/40694/disclose-to-user-if-account-exists

  A PIN is required to complete the reset unless the requester is already
  authenticated as a Super Admin.

Reset (phase 2):
  decoded -> user -> check_pin -> check_key -> update_password

  The key is verified twice: check_key is the precondition, update_password
  re-reads the user and verifies again right before the write, and the write
  itself only matches while the stored hash is unchanged. Two concurrent
  resets on one user are last-writer-wins on reset_password; only one of
  them can consume a given key.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from auth.errors import BusinessRuleViolation, ExpiredTokenError, InvalidTokenError, NotFoundError
from auth.models import KeyHash, ResetPassword, User
from auth.pipeline import run_steps
from auth.store import AuthStore
from auth.tokens import TOKEN_RESET, create_reset_token, decode_token, generate_key_hash, hash_password, verify_password
from core.config import Settings
from core.constants import UserRole
from mailer.mailer import Mailer

logger = logging.getLogger("appy.auth.reset")

MSG_SUCCESS = "Success."
MSG_USER_NOT_FOUND = "User not found."
MSG_INVALID_TOKEN = "Invalid token."
MSG_INVALID_EMAIL_OR_KEY = "Invalid email or key."
MSG_PIN_REQUIRED = "PIN required."
MSG_INVALID_PIN = "Invalid PIN."

FORGOT_PASSWORD_TEMPLATE = "forgot-password"


@dataclass(frozen=True)
class ForgotContext:
    email: str
    requester_scope: tuple[str, ...] | None = None
    user: User | None = None
    pin_required: bool = True
    key_hash: KeyHash | None = None


@dataclass(frozen=True)
class ResetContext:
    token: str
    password: str
    pin: str | None = None
    email: str | None = None
    key: str | None = None
    user: User | None = None


class PasswordResetService:
    def __init__(self, store: AuthStore, settings: Settings, mailer: Mailer) -> None:
        self.store = store
        self.settings = settings
        self.mailer = mailer
        self.forgot_steps = [
            ("user", self._forgot_user),
            ("reset_record", self._store_reset_record),
            ("send_email", self._send_email),
        ]
        self.reset_steps = [
            ("decoded", self._decode),
            ("user", self._reset_user),
            ("check_pin", self._check_pin),
            ("check_key", self._check_key),
            ("update_password", self._update_password),
        ]

    async def forgot_password(self, email: str, requester_scope: list[str] | None = None) -> str:
        scope = tuple(requester_scope) if requester_scope is not None else None
        await run_steps(self.forgot_steps, ForgotContext(email=email.lower(), requester_scope=scope), logger)
        return MSG_SUCCESS

    async def reset_password(self, token: str, password: str, pin: str | None) -> str:
        ctx = await run_steps(self.reset_steps, ResetContext(token=token, password=password, pin=pin), logger)
        logger.info("Password reset completed for user %s", ctx.user.id)
        return MSG_SUCCESS

    # ------------------------------------------------------------------
    # Forgot steps
    # ------------------------------------------------------------------

    async def _forgot_user(self, ctx: ForgotContext) -> dict:
        user = await asyncio.to_thread(self.store.get_by_email, ctx.email)
        if user is None:
            raise NotFoundError(MSG_USER_NOT_FOUND)
        pin_required = not (ctx.requester_scope and UserRole.SUPER_ADMIN.value in ctx.requester_scope)
        return {"user": user, "pin_required": pin_required}

    async def _store_reset_record(self, ctx: ForgotContext) -> dict:
        key_hash = await asyncio.to_thread(generate_key_hash)
        reset = ResetPassword(hash=key_hash.hash, pin_required=ctx.pin_required)
        await asyncio.to_thread(self.store.set_reset_password, ctx.user.id, reset)
        return {"key_hash": key_hash}

    async def _send_email(self, ctx: ForgotContext) -> None:
        user = ctx.user
        name = " ".join(part for part in (user.first_name, user.last_name) if part) or None
        options = {
            "subject": f"Reset your {self.settings.website_name} password",
            "to": {"name": name, "address": ctx.email},
        }
        context = {
            "client_url": self.settings.client_url,
            "website_name": self.settings.website_name,
            "key": create_reset_token(self.settings, ctx.email, ctx.key_hash.key),
            "pin_required": ctx.pin_required,
        }
        await asyncio.to_thread(self.mailer.send_email, options, FORGOT_PASSWORD_TEMPLATE, context)
        logger.info("Reset email sent for user %s (pin_required=%s)", user.id, ctx.pin_required)

    # ------------------------------------------------------------------
    # Reset steps
    # ------------------------------------------------------------------

    async def _decode(self, ctx: ResetContext) -> dict:
        try:
            payload = decode_token(self.settings, ctx.token, kind=TOKEN_RESET)
        except (ExpiredTokenError, InvalidTokenError) as exc:
            logger.warning("Rejected reset token: %s", exc)
            raise BusinessRuleViolation(MSG_INVALID_TOKEN, code="invalid_token") from exc
        email, key = payload.get("email"), payload.get("key")
        if not email or not key:
            raise BusinessRuleViolation(MSG_INVALID_TOKEN, code="invalid_token")
        return {"email": email, "key": key}

    async def _reset_user(self, ctx: ResetContext) -> dict:
        user = await asyncio.to_thread(self.store.get_by_email, ctx.email, False)
        if user is None or user.reset_password is None:
            raise BusinessRuleViolation(MSG_INVALID_EMAIL_OR_KEY, code="invalid_email_or_key")
        return {"user": user}

    async def _check_pin(self, ctx: ResetContext) -> None:
        if not ctx.user.reset_password.pin_required:
            return
        if not ctx.pin:
            raise BusinessRuleViolation(MSG_PIN_REQUIRED, code="pin_required")
        if not await asyncio.to_thread(verify_password, ctx.pin, ctx.user.pin):
            raise BusinessRuleViolation(MSG_INVALID_PIN, code="invalid_pin")

    async def _check_key(self, ctx: ResetContext) -> None:
        if not await asyncio.to_thread(verify_password, ctx.key, ctx.user.reset_password.hash):
            raise BusinessRuleViolation(MSG_INVALID_EMAIL_OR_KEY, code="invalid_email_or_key")

    async def _update_password(self, ctx: ResetContext) -> dict:
        fresh = await asyncio.to_thread(self.store.get_by_email, ctx.email, False)
        if (
            fresh is None
            or fresh.reset_password is None
            or not await asyncio.to_thread(verify_password, ctx.key, fresh.reset_password.hash)
        ):
            raise BusinessRuleViolation(MSG_INVALID_EMAIL_OR_KEY, code="invalid_email_or_key")

        password_hash = await asyncio.to_thread(hash_password, ctx.password)
        updated = await asyncio.to_thread(
            self.store.complete_password_reset, fresh.id, fresh.reset_password.hash, password_hash
        )
        if not updated:
            raise BusinessRuleViolation(MSG_INVALID_EMAIL_OR_KEY, code="invalid_email_or_key")
        return {"user": fresh}
