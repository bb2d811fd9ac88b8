"""Integration tests for api/routes/login.py over the real FastAPI app.

Covers:
- POST /login response shape per strategy (camelCase, no password/PIN)
- Lockout and account-state errors in the standard error envelope
- POST /login/forgot and POST /login/reset end to end, including the
  Super Admin PIN waiver via an authenticated forgot request
- GET /login/me per strategy, "Expired Access Token" and refresh rotation
- DELETE /logout ends the session; a password reset revokes prior tokens
- Store failures during authentication surface as 504
- The login rate limit comes from the startup settings
- Request validation (422) and GET /health
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from api.limiter import configure_limits, limiter, login_rate_limit
from auth.tokens import decode_token
from core.constants import EXPIRED_ACCESS_TOKEN, AuthStrategy, UserRole
from tests.conftest import TEST_SECRET, make_settings, make_user

EMAIL = "user@example.com"
PASSWORD = "correct-horse"


def _login(api, email=EMAIL, password=PASSWORD):
    return api.client.post("/login", json={"email": email, "password": password})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# TestLoginRoute
# ---------------------------------------------------------------------------


class TestLoginRoute:
    def test_refresh_strategy_shape(self, api):
        user = make_user(api.store)
        resp = _login(api)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        body = resp.json()
        assert set(body) == {"user", "accessToken", "refreshToken", "scope"}
        assert body["scope"] == ["User", f"user-{user.id}"]
        assert body["user"]["email"] == EMAIL
        assert body["user"]["isActive"] is True
        assert resp.headers["cache-control"] == "no-store"

    @pytest.mark.parametrize("strategy", [AuthStrategy.TOKEN, AuthStrategy.SESSION])
    def test_no_refresh_token_outside_refresh_strategy(self, api, strategy):
        api.use_strategy(strategy)
        make_user(api.store)
        body = _login(api).json()
        assert "refreshToken" not in body
        assert body["accessToken"]

    def test_password_and_pin_are_blank(self, api):
        make_user(api.store)
        user = _login(api).json()["user"]
        assert user["password"] == ""
        assert user["pin"] == ""

    def test_bad_credentials(self, api):
        make_user(api.store)
        resp = _login(api, password="wrong")
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid Email or Password."

    def test_lockout(self, api):
        make_user(api.store)
        for _ in range(5):
            assert _login(api, password="wrong").status_code == 400
        resp = _login(api)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Maximum number of auth attempts reached. Please try again later."

    def test_disabled_account(self, api):
        make_user(api.store, is_enabled=False)
        resp = _login(api)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Account is disabled."

    @pytest.mark.parametrize(
        "body",
        [{}, {"email": EMAIL}, {"email": "not-an-email", "password": "x"}, {"email": EMAIL, "password": ""}],
    )
    def test_validation_errors(self, api, body):
        resp = api.client.post("/login", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


# ---------------------------------------------------------------------------
# TestPasswordResetRoutes
# ---------------------------------------------------------------------------


class TestPasswordResetRoutes:
    def _mailed_token(self, api) -> str:
        return api.mailer.send_email.call_args.args[2]["key"]

    def test_forgot_unknown_email(self, api):
        resp = api.client.post("/login/forgot", json={"email": "ghost@example.com"})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "User not found."

    def test_forgot_then_reset(self, api):
        make_user(api.store, pin="4321")
        resp = api.client.post("/login/forgot", json={"email": EMAIL})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Success."}

        token = self._mailed_token(api)
        resp = api.client.post("/login/reset", json={"token": token, "password": "new-pass", "pin": "4321"})
        assert resp.status_code == 200, resp.text
        assert resp.json() == {"message": "Success."}
        assert _login(api, password="new-pass").status_code == 200

        replay = api.client.post("/login/reset", json={"token": token, "password": "again", "pin": "4321"})
        assert replay.status_code == 400
        assert replay.json()["error"]["message"] == "Invalid email or key."

    def test_reset_requires_pin_field(self, api):
        resp = api.client.post("/login/reset", json={"token": "t", "password": "p"})
        assert resp.status_code == 422

    def test_reset_with_null_pin_when_required(self, api):
        make_user(api.store)
        api.client.post("/login/forgot", json={"email": EMAIL})
        resp = api.client.post(
            "/login/reset", json={"token": self._mailed_token(api), "password": "new-pass", "pin": None}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "PIN required."

    def test_super_admin_forgot_waives_pin(self, api):
        api.use_strategy(AuthStrategy.TOKEN)
        make_user(api.store, email="root@example.com", password="root-pass", role=UserRole.SUPER_ADMIN.value)
        make_user(api.store)
        admin_token = _login(api, email="root@example.com", password="root-pass").json()["accessToken"]

        resp = api.client.post("/login/forgot", json={"email": EMAIL}, headers=_bearer(admin_token))
        assert resp.status_code == 200
        assert api.mailer.send_email.call_args.args[2]["pin_required"] is False

        resp = api.client.post(
            "/login/reset", json={"token": self._mailed_token(api), "password": "new-pass", "pin": None}
        )
        assert resp.status_code == 200, resp.text

    def test_forgot_ignores_bad_bearer(self, api):
        make_user(api.store)
        resp = api.client.post("/login/forgot", json={"email": EMAIL}, headers=_bearer("garbage"))
        assert resp.status_code == 200
        assert api.mailer.send_email.call_args.args[2]["pin_required"] is True

    def test_mail_failure(self, api):
        make_user(api.store)
        api.mailer.send_email.side_effect = OSError("SMTP unreachable")
        resp = api.client.post("/login/forgot", json={"email": EMAIL})
        assert resp.status_code == 504
        assert resp.json()["error"]["message"] == "An error occurred."


# ---------------------------------------------------------------------------
# TestAuthenticatedRoutes
# ---------------------------------------------------------------------------


class TestAuthenticatedRoutes:
    def test_me_requires_auth(self, api):
        resp = api.client.get("/login/me")
        assert resp.status_code == 401

    @pytest.mark.parametrize("strategy", list(AuthStrategy))
    def test_me_with_access_token(self, api, strategy):
        api.use_strategy(strategy)
        user = make_user(api.store)
        token = _login(api).json()["accessToken"]
        resp = api.client.get("/login/me", headers=_bearer(token))
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["id"] == user.id
        assert resp.json()["scope"][0] == "User"

    def test_token_from_other_strategy_is_rejected(self, api):
        api.use_strategy(AuthStrategy.TOKEN)
        make_user(api.store)
        token = _login(api).json()["accessToken"]
        api.use_strategy(AuthStrategy.SESSION)
        assert api.client.get("/login/me", headers=_bearer(token)).status_code == 401

    def test_expired_access_token(self, api):
        user = make_user(api.store)
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        token = jwt.encode(
            {"type": "access", "sub": str(user.id), "scope": [], "exp": past}, TEST_SECRET, algorithm="HS256"
        )
        resp = api.client.get("/login/me", headers=_bearer(token))
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == EXPIRED_ACCESS_TOKEN

    def test_refresh_token_rotation(self, api):
        make_user(api.store)
        body = _login(api).json()
        resp = api.client.get("/login/me", headers=_bearer(body["refreshToken"]))
        assert resp.status_code == 200, resp.text

        new_access = resp.headers["x-access-token"]
        new_refresh = resp.headers["x-refresh-token"]
        assert decode_token(api.settings, new_access)["type"] == "access"
        assert api.client.get("/login/me", headers=_bearer(new_access)).status_code == 200
        assert api.client.get("/login/me", headers=_bearer(new_refresh)).status_code == 200

        old = api.client.get("/login/me", headers=_bearer(body["refreshToken"]))
        assert old.status_code == 401, "A rotated-out refresh token must stop working"

    def test_password_reset_ends_sessions(self, api):
        api.use_strategy(AuthStrategy.SESSION)
        user = make_user(api.store)
        token = _login(api).json()["accessToken"]
        api.store.update_user(user.id, password="$2b$12$replacedreplacedreplacedreplacedreplacedreplacedrep")
        assert api.client.get("/login/me", headers=_bearer(token)).status_code == 401

    def test_deactivated_user_loses_access(self, api):
        api.use_strategy(AuthStrategy.TOKEN)
        user = make_user(api.store)
        token = _login(api).json()["accessToken"]
        api.store.update_user(user.id, is_active=False)
        assert api.client.get("/login/me", headers=_bearer(token)).status_code == 401

    @pytest.mark.parametrize("strategy", [AuthStrategy.SESSION, AuthStrategy.REFRESH])
    def test_logout_ends_session(self, api, strategy):
        api.use_strategy(strategy)
        make_user(api.store)
        body = _login(api).json()
        resp = api.client.delete("/logout", headers=_bearer(body["accessToken"]))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Success."}
        assert api.client.get("/login/me", headers=_bearer(body["accessToken"])).status_code == 401
        if "refreshToken" in body:
            assert api.client.get("/login/me", headers=_bearer(body["refreshToken"])).status_code == 401

    def test_logout_stateless(self, api):
        api.use_strategy(AuthStrategy.TOKEN)
        make_user(api.store)
        token = _login(api).json()["accessToken"]
        assert api.client.delete("/logout", headers=_bearer(token)).status_code == 200

    def test_password_reset_revokes_access_token(self, api):
        """Under the refresh strategy a pre-reset access token stops working once the reset completes."""
        make_user(api.store, pin="4321")
        body = _login(api).json()
        assert api.client.get("/login/me", headers=_bearer(body["accessToken"])).status_code == 200

        api.client.post("/login/forgot", json={"email": EMAIL})
        token = api.mailer.send_email.call_args.args[2]["key"]
        resp = api.client.post("/login/reset", json={"token": token, "password": "new-pass", "pin": "4321"})
        assert resp.status_code == 200, resp.text

        access = api.client.get("/login/me", headers=_bearer(body["accessToken"]))
        assert access.status_code == 401, f"Access token survived the reset: {access.text}"
        refresh = api.client.get("/login/me", headers=_bearer(body["refreshToken"]))
        assert refresh.status_code == 401


# ---------------------------------------------------------------------------
# TestInfrastructureFailures
# ---------------------------------------------------------------------------


class TestInfrastructureFailures:
    def _fail(self, *args, **kwargs):
        raise RuntimeError("db down")

    def test_optional_auth_store_failure(self, api, monkeypatch):
        """A bearer on POST /login/forgot must not turn a store failure into a 500."""
        api.use_strategy(AuthStrategy.TOKEN)
        make_user(api.store)
        token = _login(api).json()["accessToken"]
        monkeypatch.setattr(api.store, "get_by_id", self._fail)
        resp = api.client.post("/login/forgot", json={"email": EMAIL}, headers=_bearer(token))
        assert resp.status_code == 504, f"Expected 504, got {resp.status_code}: {resp.text}"
        assert resp.json()["error"]["message"] == "An error occurred."

    def test_required_auth_store_failure(self, api, monkeypatch):
        make_user(api.store)
        token = _login(api).json()["accessToken"]
        monkeypatch.setattr(api.store, "get_by_id", self._fail)
        resp = api.client.get("/login/me", headers=_bearer(token))
        assert resp.status_code == 504
        assert resp.json()["error"]["message"] == "An error occurred."

    def test_logout_store_failure(self, api, monkeypatch):
        make_user(api.store)
        token = _login(api).json()["accessToken"]
        monkeypatch.setattr(api.store, "delete_session", self._fail)
        resp = api.client.delete("/logout", headers=_bearer(token))
        assert resp.status_code == 504
        assert resp.json()["error"]["message"] == "An error occurred."


# ---------------------------------------------------------------------------
# TestLoginRateLimit
# ---------------------------------------------------------------------------


class TestLoginRateLimit:
    def test_lifespan_adopts_settings_limit(self, api):
        assert login_rate_limit() == api.settings.login_rate_limit

    def test_limit_comes_from_startup_settings(self, api):
        """The limit resolved into app settings is enforced without re-reading the environment."""
        make_user(api.store)
        configure_limits(make_settings(login_rate_limit="3/minute"))
        try:
            for _ in range(3):
                assert _login(api).status_code == 200
            resp = _login(api)
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "rate_limited"
        finally:
            configure_limits(api.settings)
            limiter.reset()


# ---------------------------------------------------------------------------
# TestHealth
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health(self, api):
        resp = api.client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert "version" in resp.json()
