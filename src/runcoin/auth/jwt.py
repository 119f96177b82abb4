"""Bearer access tokens.

Tokens are issued by the account service (or ``create_access_token`` in
development and tests) and carry the user id in ``sub``. Secret,
algorithm and issuer come from settings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from runcoin.config import get_settings

ACCESS_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    email: str | None


def create_access_token(user_id: int, email: str, *, expires_minutes: int | None = None) -> str:
    """Sign an access token for ``user_id``. ``expires_minutes`` overrides the configured lifetime."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    lifetime = settings.jwt_access_token_expire_minutes if expires_minutes is None else expires_minutes
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=lifetime),
        "iss": settings.jwt_issuer,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> dict[str, Any]:
    """Decode ``token`` and check signature, expiry, issuer and type.

    Raises:
        jwt.InvalidTokenError: on any failed check.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload


def decode_access_token(token: str) -> AccessClaims:
    """Verified claims of an access token; a non-numeric subject is invalid."""
    payload = verify_token(token)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as e:
        msg = "Token subject is not a user id"
        raise jwt.InvalidTokenError(msg) from e
    return AccessClaims(user_id=user_id, email=payload.get("email"))
