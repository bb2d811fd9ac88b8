"""
auth/login.py -- The login request lifecycle.

Steps run strictly in order and stop at the first failure:

  abuse_detected -> user -> log_attempt -> is_active -> is_enabled ->
  is_deleted -> session -> scope -> tokens

Which tokens get minted is decided by TOKEN_PLANS, keyed by strategy, rather
than by a branch per token kind. The plan names an expiration period
("short" / "long") for each kind it mints:

  strategy                      access   session   refresh
  standard-jwt                  long     -         -
  jwt-with-session              -        long      -
  jwt-with-session-and-refresh  short    -         long

The session token is delivered in the accessToken field of the response; a
client never needs to know which kind it holds.

Blocking work (store queries, bcrypt) runs in worker threads so a slow hash
never stalls other in-flight requests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from auth.errors import BusinessRuleViolation
from auth.models import Session, User
from auth.pipeline import run_steps
from auth.scope import get_scope
from auth.sessions import SessionManager
from auth.store import AuthStore
from auth.throttle import AbuseThrottle
from auth.tokens import TOKEN_REFRESH, TOKEN_SESSION, create_token, find_by_credentials
from core.config import Settings
from core.constants import AuthStrategy

logger = logging.getLogger("appy.auth.login")

MSG_ABUSE = "Maximum number of auth attempts reached. Please try again later."
MSG_BAD_CREDENTIALS = "Invalid Email or Password."
MSG_INACTIVE = "Account is inactive."
MSG_DISABLED = "Account is disabled."
MSG_DELETED = "Account is deleted."


@dataclass(frozen=True)
class TokenPlan:
    access: str | None = None
    session: str | None = None
    refresh: str | None = None

    @property
    def needs_session(self) -> bool:
        return self.session is not None or self.refresh is not None


TOKEN_PLANS: dict[AuthStrategy, TokenPlan] = {
    AuthStrategy.TOKEN: TokenPlan(access="long"),
    AuthStrategy.SESSION: TokenPlan(session="long"),
    AuthStrategy.REFRESH: TokenPlan(access="short", refresh="long"),
}


@dataclass(frozen=True)
class LoginContext:
    ip: str
    email: str
    password: str
    user: User | None = None
    session: Session | None = None
    session_key: str | None = None
    scope: list[str] = field(default_factory=list)
    access_token: str | None = None
    refresh_token: str | None = None


@dataclass
class LoginResult:
    user: User
    scope: list[str]
    access_token: str
    refresh_token: str | None = None


class LoginService:
    """Runs the login pipeline against one store and one resolved Settings."""

    def __init__(self, store: AuthStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings
        self.plan = TOKEN_PLANS[settings.auth_strategy]
        self.throttle = AbuseThrottle(store, settings)
        self.sessions = SessionManager(store)
        self.steps = [
            ("abuse_detected", self._abuse_detected),
            ("user", self._find_user),
            ("log_attempt", self._log_attempt),
            ("is_active", self._is_active),
            ("is_enabled", self._is_enabled),
            ("is_deleted", self._is_deleted),
            ("session", self._create_session),
            ("scope", self._resolve_scope),
            ("tokens", self._mint_tokens),
        ]

    async def login(self, ip: str, email: str, password: str) -> LoginResult:
        context = await run_steps(self.steps, LoginContext(ip=ip, email=email.lower(), password=password), logger)
        logger.info("User %s logged in from %s", context.user.id, ip)
        return LoginResult(
            user=context.user,
            scope=context.scope,
            access_token=context.access_token,
            refresh_token=context.refresh_token,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _abuse_detected(self, ctx: LoginContext) -> None:
        if await asyncio.to_thread(self.throttle.abuse_detected, ctx.ip, ctx.email):
            raise BusinessRuleViolation(MSG_ABUSE, code="too_many_attempts")

    async def _find_user(self, ctx: LoginContext) -> dict:
        user = await asyncio.to_thread(find_by_credentials, self.store, ctx.email, ctx.password)
        return {"user": user}

    async def _log_attempt(self, ctx: LoginContext) -> None:
        if ctx.user is not None:
            return
        await asyncio.to_thread(self.throttle.create_attempt, ctx.ip, ctx.email)
        raise BusinessRuleViolation(MSG_BAD_CREDENTIALS, code="bad_credentials")

    async def _is_active(self, ctx: LoginContext) -> None:
        if not ctx.user.is_active:
            raise BusinessRuleViolation(MSG_INACTIVE, code="account_inactive")

    async def _is_enabled(self, ctx: LoginContext) -> None:
        if not ctx.user.is_enabled:
            raise BusinessRuleViolation(MSG_DISABLED, code="account_disabled")

    async def _is_deleted(self, ctx: LoginContext) -> None:
        if ctx.user.is_deleted:
            raise BusinessRuleViolation(MSG_DELETED, code="account_deleted")

    async def _create_session(self, ctx: LoginContext) -> dict | None:
        if not self.plan.needs_session:
            return None
        session, key = await asyncio.to_thread(self.sessions.create_session, ctx.user)
        return {"session": session, "session_key": key}

    async def _resolve_scope(self, ctx: LoginContext) -> dict:
        return {"scope": await asyncio.to_thread(get_scope, self.store, ctx.user)}

    async def _mint_tokens(self, ctx: LoginContext) -> dict:
        periods = self.settings.expiration_period
        plan = self.plan
        tokens: dict = {}
        if plan.access:
            tokens["access_token"] = create_token(
                self.settings,
                ctx.user,
                None,
                ctx.scope,
                periods[plan.access],
                session_id=ctx.session.id if ctx.session else None,
            )
        if plan.session:
            tokens["access_token"] = self._session_token(ctx, periods[plan.session], TOKEN_SESSION)
        if plan.refresh:
            tokens["refresh_token"] = self._session_token(ctx, periods[plan.refresh], TOKEN_REFRESH)
        return tokens

    def _session_token(self, ctx: LoginContext, expiration: str, kind: str) -> str:
        return create_token(
            self.settings, None, ctx.session, ctx.scope, expiration, session_key=ctx.session_key, kind=kind
        )
