"""Tests for JWT token management."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from runcoin.auth.jwt import AccessClaims, create_access_token, decode_access_token, verify_token
from runcoin.config import get_settings


class TestAccessToken:
    def test_create_and_verify(self):
        token = create_access_token(user_id=1, email="runner@example.com")
        payload = verify_token(token, expected_type="access")
        assert payload["sub"] == "1"
        assert payload["email"] == "runner@example.com"
        assert payload["type"] == "access"
        assert payload["iss"] == "runcoin"

    def test_expired_token_rejected(self):
        token = create_access_token(user_id=1, email="runner@example.com", expires_minutes=-1)
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(token)

    def test_wrong_type_rejected(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "1", "type": "refresh", "iss": settings.jwt_issuer, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type"):
            verify_token(token, expected_type="access")

    def test_wrong_secret_rejected(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "1", "type": "access", "iss": settings.jwt_issuer},
            "some-other-secret-that-is-long-enough-too",
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_wrong_issuer_rejected(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "1", "type": "access", "iss": "someone-else"},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)


class TestDecodeAccessToken:
    def test_claims(self):
        token = create_access_token(user_id=42, email="runner@example.com")
        assert decode_access_token(token) == AccessClaims(user_id=42, email="runner@example.com")

    def test_non_numeric_subject(self):
        settings = get_settings()
        token = jwt.encode(
            {
                "sub": "not-a-user",
                "type": "access",
                "iss": settings.jwt_issuer,
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(jwt.InvalidTokenError, match="subject"):
            decode_access_token(token)

    def test_missing_expiry(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "1", "type": "access", "iss": settings.jwt_issuer},
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)
