"""Verification of identity provider session tokens.

The provider signs short-lived RS256 JWTs and publishes its keys as a JWKS
document. Keys are fetched with ``PyJWKClient`` (cached) and the blocking
fetch runs in the threadpool.
"""

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import jwt
from jwt import PyJWKClient
from jwt.exceptions import PyJWKClientConnectionError, PyJWTError
from starlette.concurrency import run_in_threadpool

from seatpass.config.settings import settings
from seatpass.shared.exceptions import CollaboratorException, ConfigurationException

from .exceptions import InvalidAssertionException
from .schemas import IdentityAssertion

logger = logging.getLogger(__name__)

ALGORITHMS = ["RS256"]


def _organizations(claims: dict[str, Any]) -> tuple[str | None, str | None, dict[str, str]]:
    """Extract active org, its role and all memberships from provider claims.

    Accepts both the flat ``org_id``/``org_role`` claims and the compact
    ``o: {id, rol}`` form, plus an ``organizations`` id -> role map.
    """
    org_id = claims.get("org_id")
    org_role = claims.get("org_role")
    compact = claims.get("o")
    if not org_id and isinstance(compact, dict):
        org_id = compact.get("id")
        org_role = compact.get("rol")

    memberships: dict[str, str] = {}
    listed = claims.get("organizations")
    if isinstance(listed, dict):
        for key, value in listed.items():
            role = value.get("role") if isinstance(value, dict) else value
            if isinstance(role, str):
                memberships[str(key)] = role
    return org_id, org_role, memberships


class IdentityProvider:
    """Verifier for identity provider bearer tokens."""

    def __init__(
        self,
        jwks_url: str,
        issuer: str | None = None,
        audience: str | None = None,
        timeout: int = 5,
        leeway: int = 5,
    ):
        self.issuer = issuer
        self.audience = audience
        self.leeway = leeway
        self.jwks_client = PyJWKClient(jwks_url, cache_keys=True, timeout=timeout)

    def _verify(self, bearer: str) -> IdentityAssertion:
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(bearer)
        except PyJWKClientConnectionError as e:
            logger.error(f"Identity provider key fetch failed: {e}")
            raise CollaboratorException("identity_provider") from e
        except PyJWTError as e:
            raise InvalidAssertionException() from e

        try:
            claims = jwt.decode(
                bearer,
                signing_key.key,
                algorithms=ALGORITHMS,
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway,
                options={"require": ["sub", "exp"], "verify_aud": self.audience is not None},
            )
        except PyJWTError as e:
            raise InvalidAssertionException() from e

        org_id, org_role, memberships = _organizations(claims)
        return IdentityAssertion(
            subject_id=claims["sub"],
            session_id=claims.get("sid"),
            expiry=datetime.fromtimestamp(claims["exp"], UTC),
            email=claims.get("email"),
            org_id=org_id,
            org_role=org_role,
            organizations=memberships,
        )

    async def verify_identity_assertion(self, bearer: str) -> IdentityAssertion:
        """Verify a provider bearer token.

        Raises:
            InvalidAssertionException: If the token does not verify
            CollaboratorException: If the key set cannot be fetched

        """
        return await run_in_threadpool(self._verify, bearer)


@lru_cache
def get_identity_provider() -> IdentityProvider:
    if not settings.identity_jwks_url:
        raise ConfigurationException("identity_jwks_url")
    return IdentityProvider(
        settings.identity_jwks_url,
        issuer=settings.identity_issuer,
        audience=settings.identity_audience,
        timeout=settings.identity_provider_timeout_seconds,
        leeway=settings.token_leeway_seconds,
    )
