"""
Tests for password hashing, access tokens and CSRF tokens.
"""

import jwt
import pytest
from starlette.requests import Request

from auth import csrf, security


def _request(method="POST", path="/api/tasks", headers=None, cookies=None):
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    if cookies:
        raw_headers.append((b"cookie", "; ".join(f"{k}={v}" for k, v in cookies.items()).encode()))
    return Request({"type": "http", "method": method, "path": path, "headers": raw_headers, "query_string": b""})


class TestPasswords:
    def test_strong_password_has_no_problems(self):
        assert security.password_problems("Sup3rSecret") == []

    def test_weak_password_lists_every_missing_rule(self):
        assert security.password_problems("abc") == [
            "at least 8 characters",
            "an uppercase letter",
            "a number",
        ]

    def test_hash_and_verify(self):
        hashed = security.hash_password("Sup3rSecret")
        assert hashed != "Sup3rSecret"
        assert security.verify_password("Sup3rSecret", hashed)
        assert not security.verify_password("wrong", hashed)

    def test_verify_rejects_garbage_hash(self):
        assert not security.verify_password("Sup3rSecret", "not-a-bcrypt-hash")
        assert not security.verify_password("", "")

    def test_empty_password_cannot_be_hashed(self):
        with pytest.raises(security.AuthSecurityError):
            security.hash_password("")


class TestAccessTokens:
    def test_round_trip(self):
        token = security.build_access_token(user_id=42, email="ana@example.com", role="admin")
        payload = security.decode_access_token(token)
        assert payload["sub"] == "42"
        assert payload["email"] == "ana@example.com"
        assert payload["role"] == "admin"
        assert payload["type"] == "access"

    def test_expired_token_is_rejected(self, monkeypatch):
        monkeypatch.setattr(security, "now_epoch_s", lambda: 1_000)
        token = security.build_access_token(user_id=1, email="a@b.co")
        with pytest.raises(security.AuthSecurityError, match="expired"):
            security.decode_access_token(token)

    def test_wrong_secret_is_rejected(self, monkeypatch):
        token = security.build_access_token(user_id=1, email="a@b.co")
        monkeypatch.setenv("JWT_SECRET", "another-secret")
        with pytest.raises(security.AuthSecurityError, match="Invalid"):
            security.decode_access_token(token)

    def test_non_access_token_is_rejected(self):
        token = jwt.encode({"sub": "1", "type": "refresh"}, "test-secret", algorithm="HS256")
        with pytest.raises(security.AuthSecurityError, match="not an access token"):
            security.decode_access_token(token)

    def test_refresh_tokens_are_random_and_hashed(self):
        first, second = security.build_refresh_token(), security.build_refresh_token()
        assert first != second
        assert len(security.hash_refresh_token(first)) == 64
        with pytest.raises(security.AuthSecurityError, match="Refresh token is empty"):
            security.hash_refresh_token("")

    @pytest.mark.parametrize(
        "email,valid",
        [("ana@example.com", True), ("ana@example", False), ("no at sign", False), ("  ", False)],
    )
    def test_email_validation(self, email, valid):
        assert security.is_valid_email(email) is valid


class TestCsrf:
    def test_generated_token_is_valid(self):
        token = csrf.generate_token()
        assert csrf.is_valid_token(token)
        assert csrf.tokens_match(token, token)

    def test_tampered_token_is_invalid(self):
        nonce, _, _ = csrf.generate_token().partition(".")
        assert not csrf.is_valid_token(f"{nonce}.deadbeef")
        assert not csrf.is_valid_token("no-signature")

    def test_cookie_and_header_must_match(self):
        assert not csrf.tokens_match(csrf.generate_token(), csrf.generate_token())
        assert not csrf.tokens_match(None, csrf.generate_token())

    def test_cookie_session_writes_require_check(self):
        request = _request(cookies={"token": "abc"})
        assert csrf.requires_check(request)

    def test_safe_methods_bearer_and_exempt_paths_skip_check(self):
        assert not csrf.requires_check(_request(method="GET", cookies={"token": "abc"}))
        assert not csrf.requires_check(_request(headers={"Authorization": "Bearer abc"}, cookies={"token": "abc"}))
        assert not csrf.requires_check(_request(path="/api/auth/login", cookies={"token": "abc"}))
        assert not csrf.requires_check(_request())
