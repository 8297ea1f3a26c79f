"""Authentication dependencies for FastAPI."""

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.dependencies import get_db_session
from seatpass.database.store import CredentialStore
from seatpass.features.identity.provider import get_identity_provider
from seatpass.features.user.models import User

from .exceptions import InvalidTokenException
from .jwt_utils import ACCESS_TOKEN_TYPE, EXTENSION_TOKEN_TYPE
from .service import TokenService

security = HTTPBearer()


def _token_type(token: str) -> str | None:
    """Read the ``type`` claim without verifying, only to pick a verifier."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except InvalidTokenError as err:
        raise InvalidTokenException() from err
    return claims.get("type")


async def get_extension_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the user owning a long-lived extension token."""
    return await TokenService.verify_long_lived_token(session, credentials.credentials)


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_db_session),
) -> str:
    """Resolve the caller's identity from any accepted bearer.

    Accepts a session access token, a long-lived extension token or an
    identity provider session token.
    """
    token = credentials.credentials
    token_type = _token_type(token)

    if token_type == ACCESS_TOKEN_TYPE:
        return TokenService.verify_access_token(token)["sub"]
    if token_type == EXTENSION_TOKEN_TYPE:
        user = await TokenService.verify_long_lived_token(session, token)
        return user.identity

    assertion = await get_identity_provider().verify_identity_assertion(token)
    return assertion.subject_id


async def get_current_user(
    identity: str = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the user record of the authenticated caller.

    Raises:
        InvalidTokenException: If the identity has no user record

    """
    user = await CredentialStore(session).get_user_by_identity(identity)
    if user is None:
        raise InvalidTokenException()
    return user
