"""JWT utilities for the editor-extension tokens.

Three token classes share one signing secret but never verify as each other:

- ``access``: stateless, 1 hour, optionally bound to a session (``sid``).
- ``refresh``: bound to a session id, validated against the session row.
- ``extension_long_lived``: carries ``iss``/``aud``, validated against its
  stored hash.
"""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import InvalidTokenError

from seatpass.config.settings import settings
from seatpass.shared.exceptions import ConfigurationException

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
EXTENSION_TOKEN_TYPE = "extension_long_lived"


def _secret() -> str:
    if not settings.jwt_secret:
        raise ConfigurationException("jwt_secret")
    return settings.jwt_secret


def _encode(claims: dict[str, Any], token_type: str, expires_delta: timedelta, now: datetime | None) -> str:
    issued_at = now or datetime.now(UTC)
    payload = {
        **claims,
        "type": token_type,
        "iat": issued_at,
        "exp": issued_at + expires_delta,
    }
    return jwt.encode(payload, _secret(), algorithm=settings.jwt_algorithm)


def create_access_token(
    identity: str,
    session_id: str | None = None,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        identity: Subject the token is issued to
        session_id: Session the token belongs to, if any
        expires_delta: Optional lifetime override
        now: Issue time (defaults to the current time)

    Returns:
        Encoded JWT token string

    """
    claims: dict[str, Any] = {"sub": identity}
    if session_id is not None:
        claims["sid"] = session_id
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    return _encode(claims, ACCESS_TOKEN_TYPE, lifetime, now)


def create_refresh_token(
    identity: str,
    session_id: str,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Create a JWT refresh token bound to a session id."""
    lifetime = expires_delta or timedelta(days=settings.refresh_token_expire_days)
    # jti keeps two refresh tokens minted in the same second distinct
    claims = {"sub": identity, "sid": session_id, "jti": secrets.token_urlsafe(16)}
    return _encode(claims, REFRESH_TOKEN_TYPE, lifetime, now)


def create_extension_token(
    identity: str,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Create a long-lived extension token carrying issuer and audience."""
    lifetime = expires_delta or timedelta(days=settings.extension_token_expire_days)
    claims = {
        "sub": identity,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "jti": secrets.token_urlsafe(16),
    }
    return _encode(claims, EXTENSION_TOKEN_TYPE, lifetime, now)


def decode_token(token: str, expected_type: str, **options: Any) -> dict[str, Any]:
    """Decode and verify a JWT token of the given class.

    Raises:
        InvalidTokenError: If the signature, expiry or type is wrong

    """
    payload = jwt.decode(
        token,
        _secret(),
        algorithms=[settings.jwt_algorithm],
        leeway=settings.token_leeway_seconds,
        options={"require": ["sub", "type", "iat", "exp"]},
        **options,
    )
    if payload.get("type") != expected_type:
        raise InvalidTokenError(f"Expected {expected_type} token")
    return payload


def decode_access_token(token: str) -> dict[str, Any]:
    return decode_token(token, ACCESS_TOKEN_TYPE)


def decode_refresh_token(token: str) -> dict[str, Any]:
    payload = decode_token(token, REFRESH_TOKEN_TYPE)
    if not payload.get("sid"):
        raise InvalidTokenError("Refresh token is not bound to a session")
    return payload


def decode_extension_token(token: str) -> dict[str, Any]:
    return decode_token(token, EXTENSION_TOKEN_TYPE, audience=settings.jwt_audience, issuer=settings.jwt_issuer)
