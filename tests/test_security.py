"""
test_security.py — Unit tests for password hashing, session JWTs and ids.
"""

import re
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from gateway.core.config import settings
from gateway.core.security import (
    SESSION_TOKEN_TYPE,
    TokenClaims,
    TokenConfigError,
    create_access_token,
    decode_access_token,
    generate_api_key,
    hash_password,
    new_guest_id,
    verify_password,
)


class TestPasswordHashing:
    def test_hash_differs_from_plain(self):
        assert hash_password("mysecret") != "mysecret"

    def test_verify_correct_password(self):
        hashed = hash_password("correct-horse-battery-staple")
        assert verify_password("correct-horse-battery-staple", hashed) is True

    def test_verify_wrong_password(self):
        hashed = hash_password("correct")
        assert verify_password("wrong", hashed) is False

    def test_same_password_produces_different_hashes(self):
        assert hash_password("password") != hash_password("password")

    def test_non_bcrypt_hash_is_rejected(self):
        assert verify_password("anything", "plain-text-not-a-hash") is False


class TestJWT:
    def test_encode_decode_roundtrip(self):
        token = create_access_token("user-id-123", "a@example.com")
        assert decode_access_token(token) == TokenClaims("user-id-123", "a@example.com")

    def test_claims_shape(self):
        token = create_access_token("u1", "a@example.com")
        payload = jwt.get_unverified_claims(token)
        assert payload["type"] == SESSION_TOKEN_TYPE
        assert payload["exp"] - payload["iat"] == settings.jwt_expiry_hours * 3600

    def test_tampered_token_returns_none(self):
        token = create_access_token("user-123", "a@example.com")
        tampered = token[:-5] + ("AAAAA" if not token.endswith("AAAAA") else "BBBBB")
        assert decode_access_token(tampered) is None

    def test_expired_token_returns_none(self):
        token = create_access_token("u1", "a@example.com", expires_delta=timedelta(seconds=-10))
        assert decode_access_token(token) is None

    def test_wrong_type_returns_none(self):
        now = datetime.now(tz=timezone.utc)
        token = jwt.encode(
            {"user_id": "u1", "email": "a@example.com", "type": "refresh",
             "exp": int((now + timedelta(hours=1)).timestamp())},
            settings.action_token_secret,
            algorithm="HS256",
        )
        assert decode_access_token(token) is None

    def test_wrong_secret_returns_none(self):
        token = jwt.encode(
            {"user_id": "u1", "email": "a@example.com", "type": SESSION_TOKEN_TYPE},
            "some-other-secret",
            algorithm="HS256",
        )
        assert decode_access_token(token) is None

    def test_garbage_token_returns_none(self):
        assert decode_access_token("not.a.jwt") is None

    def test_empty_string_returns_none(self):
        assert decode_access_token("") is None

    def test_missing_secret_refuses_to_issue(self, monkeypatch):
        monkeypatch.setattr(settings, "action_token_secret", None)
        with pytest.raises(TokenConfigError):
            create_access_token("u1", "a@example.com")

    def test_missing_secret_refuses_to_decode(self, monkeypatch):
        token = create_access_token("u1", "a@example.com")
        monkeypatch.setattr(settings, "action_token_secret", None)
        assert decode_access_token(token) is None


class TestIdentifiers:
    def test_api_key_format(self):
        key = generate_api_key()
        assert re.fullmatch(r"ak_[0-9a-f]{32}", key)
        assert generate_api_key() != key

    def test_guest_id_format(self):
        now = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
        guest_id = new_guest_id(now)
        assert re.fullmatch(r"anon-1705320000000-[0-9a-f]{8}", guest_id)

    def test_guest_claims_are_guest(self):
        assert TokenClaims(new_guest_id(), "x@anon.local").is_guest is True
        assert TokenClaims("65a1b2c3d4e5f60718293a4b", "a@example.com").is_guest is False
