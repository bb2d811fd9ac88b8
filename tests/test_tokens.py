"""Unit tests for auth/tokens.py.

Covers:
- Duration parsing for expiration periods
- create_token() subject rules (exactly one of user / session)
- Payload shape per token kind, and that no secret hash is embedded
- decode_token() error mapping: expired vs. invalid vs. wrong kind
- find_by_credentials() matching, including for unusable accounts
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import ExpiredTokenError, InvalidTokenError
from auth.models import Session, User
from auth.tokens import (
    TOKEN_ACCESS,
    TOKEN_REFRESH,
    TOKEN_RESET,
    TOKEN_SESSION,
    create_reset_token,
    create_token,
    decode_token,
    find_by_credentials,
    generate_key_hash,
    parse_duration,
    verify_password,
)
from tests.conftest import TEST_SECRET, make_settings, make_user


def _expired(claims: dict) -> str:
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    return jwt.encode({**claims, "iat": past, "exp": past}, TEST_SECRET, algorithm="HS256")


# ---------------------------------------------------------------------------
# TestParseDuration
# ---------------------------------------------------------------------------


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("10m", timedelta(minutes=10)),
            ("4h", timedelta(hours=4)),
            ("730h", timedelta(hours=730)),
            ("30s", timedelta(seconds=30)),
            ("2d", timedelta(days=2)),
        ],
    )
    def test_valid_durations(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "10", "m", "10w", "-5m", "ten minutes"])
    def test_invalid_durations_raise(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


# ---------------------------------------------------------------------------
# TestCreateToken
# ---------------------------------------------------------------------------


class TestCreateToken:
    def _user(self) -> User:
        return User(email="a@example.com", id=7, password="$2b$hash", pin="$2b$pin", role_name="Admin")

    def test_requires_exactly_one_subject(self):
        """Neither or both of user/session is a programming error."""
        settings = make_settings()
        session = Session(user_id=7, key="h", id=3)
        with pytest.raises(ValueError):
            create_token(settings, None, None, [], "10m")
        with pytest.raises(ValueError):
            create_token(settings, self._user(), session, [], "10m", session_key="k")

    def test_session_subject_requires_raw_key(self):
        with pytest.raises(ValueError):
            create_token(make_settings(), None, Session(user_id=7, key="h", id=3), [], "10m")

    def test_access_token_payload(self):
        settings = make_settings()
        token = create_token(settings, self._user(), None, ["Admin", "user-7"], "10m")
        payload = decode_token(settings, token, kind=TOKEN_ACCESS)
        assert payload["sub"] == "7"
        assert payload["scope"] == ["Admin", "user-7"]
        assert payload["user"] == {"id": 7, "email": "a@example.com", "role": "Admin"}
        assert "sessionId" not in payload

    def test_access_token_carries_no_secrets(self):
        """Password and PIN hashes must never end up in a token."""
        settings = make_settings()
        token = create_token(settings, self._user(), None, [], "10m")
        claims = jwt.get_unverified_claims(token)
        flat = repr(claims)
        assert "$2b$hash" not in flat, f"Password hash leaked into token: {claims}"
        assert "$2b$pin" not in flat, f"PIN hash leaked into token: {claims}"

    def test_access_token_session_reference(self):
        settings = make_settings()
        token = create_token(settings, self._user(), None, [], "10m", session_id=11)
        assert decode_token(settings, token)["sessionId"] == 11

    @pytest.mark.parametrize("kind", [TOKEN_SESSION, TOKEN_REFRESH])
    def test_session_token_payload(self, kind):
        settings = make_settings()
        session = Session(user_id=7, key="stored-hash", id=3)
        token = create_token(settings, None, session, ["User"], "4h", session_key="raw-key", kind=kind)
        payload = decode_token(settings, token, kind=kind)
        assert payload["sessionId"] == 3
        assert payload["sessionKey"] == "raw-key"
        assert payload["sub"] == "session:3"
        assert "stored-hash" not in repr(payload)

    def test_session_kind_defaults_to_session(self):
        settings = make_settings()
        token = create_token(settings, None, Session(user_id=1, key="h", id=1), [], "4h", session_key="k")
        assert decode_token(settings, token)["type"] == TOKEN_SESSION

    def test_expiry_follows_duration(self):
        settings = make_settings()
        token = create_token(settings, self._user(), None, [], "4h")
        payload = decode_token(settings, token)
        assert payload["exp"] - payload["iat"] == 4 * 3600


# ---------------------------------------------------------------------------
# TestDecodeToken
# ---------------------------------------------------------------------------


class TestDecodeToken:
    def test_expired_token(self):
        with pytest.raises(ExpiredTokenError):
            decode_token(make_settings(), _expired({"type": TOKEN_ACCESS, "sub": "1"}))

    def test_garbage_token(self):
        with pytest.raises(InvalidTokenError):
            decode_token(make_settings(), "not-a-jwt")

    def test_wrong_secret(self):
        token = jwt.encode({"type": TOKEN_ACCESS}, "x" * 40, algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            decode_token(make_settings(), token)

    def test_wrong_kind(self):
        """A reset token cannot be replayed as an access token."""
        settings = make_settings()
        token = create_reset_token(settings, "a@example.com", "key")
        with pytest.raises(InvalidTokenError):
            decode_token(settings, token, kind=TOKEN_ACCESS)

    def test_reset_token_uses_medium_expiration(self):
        settings = make_settings(expiration_medium="2h")
        payload = decode_token(settings, create_reset_token(settings, "a@example.com", "key"), kind=TOKEN_RESET)
        assert payload["email"] == "a@example.com"
        assert payload["key"] == "key"
        assert payload["exp"] - payload["iat"] == 2 * 3600


# ---------------------------------------------------------------------------
# TestCredentials
# ---------------------------------------------------------------------------


class TestCredentials:
    def test_key_hash_round_trip(self):
        key_hash = generate_key_hash()
        assert key_hash.key != key_hash.hash
        assert verify_password(key_hash.key, key_hash.hash)
        assert not verify_password("other", key_hash.hash)

    def test_verify_against_missing_or_malformed_hash(self):
        assert verify_password("x", None) is False
        assert verify_password("x", "not-a-bcrypt-hash") is False

    def test_find_by_credentials(self, store):
        user = make_user(store, email="Alice@Example.com", password="pw-1")
        found = find_by_credentials(store, "alice@example.com", "pw-1")
        assert found is not None and found.id == user.id
        assert find_by_credentials(store, "ALICE@example.com", "pw-1") is not None

    def test_wrong_password_and_unknown_email(self, store):
        make_user(store, email="bob@example.com", password="pw-1")
        assert find_by_credentials(store, "bob@example.com", "nope") is None
        assert find_by_credentials(store, "nobody@example.com", "pw-1") is None

    def test_account_flags_are_not_checked(self, store):
        """The login pipeline gates on flags; matching alone ignores them."""
        make_user(store, email="off@example.com", password="pw-1", is_active=False, is_deleted=True)
        assert find_by_credentials(store, "off@example.com", "pw-1") is not None
