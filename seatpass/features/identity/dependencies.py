"""Identity provider dependencies for FastAPI."""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .provider import IdentityProvider, get_identity_provider
from .schemas import IdentityAssertion

security = HTTPBearer()


async def get_identity_assertion(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    provider: IdentityProvider = Depends(get_identity_provider),
) -> IdentityAssertion:
    """Verify the identity provider session token sent as bearer."""
    return await provider.verify_identity_assertion(credentials.credentials)
