"""Authentication routers: PKCE handshake, extension sessions and extension tokens."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.dependencies import get_db_session
from seatpass.features.identity.dependencies import get_identity_assertion
from seatpass.features.identity.schemas import IdentityAssertion
from seatpass.features.user.models import User
from seatpass.features.user.schemas import UserProfileResponse
from seatpass.shared.rate_limit import HANDSHAKE_LIMIT, TOKEN_EXCHANGE_LIMIT, limiter
from seatpass.shared.security import require_cron_secret

from .dependencies import get_extension_user
from .exceptions import InvalidOrExpiredCodeException, SessionExpiredException
from .pkce import PkceService
from .schemas import (
    AttachCodeRequest,
    AttachCodeResponse,
    CompleteRequest,
    CompleteResponse,
    ExtensionTokenInfo,
    InitiateRequest,
    InitiateResponse,
    PurgeExchangesResponse,
    LongLivedTokenResponse,
    RefreshTokenRequest,
    RevokeTokenRequest,
    RevokeTokenResponse,
    SessionTokenResponse,
    TokenExchangeRequest,
)
from .service import TokenService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth/extension", tags=["Extension Authentication"])
token_router = APIRouter(prefix="/extension-tokens", tags=["Extension Tokens"])


def _client_info(request: Request) -> tuple[str | None, str | None]:
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.post("/initiate", response_model=InitiateResponse)
@limiter.limit(HANDSHAKE_LIMIT)
async def initiate(request: Request, data: InitiateRequest, session: AsyncSession = Depends(get_db_session)):
    """Start a PKCE handshake.

    - **redirect_uri**: Callback the extension listens on
    - **state**: Optional client nonce (a random one is generated otherwise)
    - **code_challenge**: Optional S256 challenge; omit to get a server-generated verifier

    Returns the sign-in URL to open in a browser.
    """
    response = await PkceService.initiate(
        session,
        data.redirect_uri,
        state=data.state,
        code_challenge=data.code_challenge,
        code_challenge_method=data.code_challenge_method,
    )
    await session.commit()
    return response


@router.post("/complete", response_model=CompleteResponse)
async def complete(
    data: CompleteRequest,
    assertion: IdentityAssertion = Depends(get_identity_assertion),
    session: AsyncSession = Depends(get_db_session),
):
    """Bind the signed-in identity to a pending handshake.

    Requires the identity provider session token as bearer.
    """
    response = await PkceService.complete_with_identity(
        session, data.state, assertion.subject_id, data.redirect_uri, email=assertion.email
    )
    await session.commit()
    return response


@router.post("/authorization-code", response_model=AttachCodeResponse)
async def attach_authorization_code(
    data: AttachCodeRequest,
    assertion: IdentityAssertion = Depends(get_identity_assertion),
    session: AsyncSession = Depends(get_db_session),
):
    """Attach a client-issued authorization code to a pending handshake."""
    try:
        response = await PkceService.attach_authorization_code(
            session,
            data.state,
            assertion.subject_id,
            data.authorization_code,
            email=data.email or assertion.email,
            username=data.username,
        )
    except SessionExpiredException:
        # Persist the removal of the expired record
        await session.commit()
        raise
    await session.commit()
    return response


@router.post("/token", response_model=SessionTokenResponse)
@limiter.limit(TOKEN_EXCHANGE_LIMIT)
async def exchange_code(request: Request, data: TokenExchangeRequest, session: AsyncSession = Depends(get_db_session)):
    """Exchange the authorization code and PKCE verifier for session tokens."""
    ip_address, user_agent = _client_info(request)
    try:
        tokens = await PkceService.exchange_code(
            session, data.code, data.code_verifier, data.redirect_uri, ip_address, user_agent
        )
    except InvalidOrExpiredCodeException:
        # A wrong verifier burns the code
        await session.commit()
        raise
    await session.commit()
    return tokens


@router.post("/refresh", response_model=SessionTokenResponse)
async def refresh_token(data: RefreshTokenRequest, session: AsyncSession = Depends(get_db_session)):
    """Rotate the session: returns a new access and refresh token.

    The presented refresh token stops working.
    """
    tokens = await TokenService.rotate_session(session, data.refresh_token)
    await session.commit()
    return tokens


@router.post("/logout")
async def logout(data: RefreshTokenRequest, session: AsyncSession = Depends(get_db_session)):
    """End the session the refresh token belongs to."""
    ended = await TokenService.end_session(session, data.refresh_token)
    await session.commit()
    if ended:
        return {"message": "Successfully logged out"}
    return {"message": "Session already ended"}


@router.post("/exchanges/purge", response_model=PurgeExchangesResponse, dependencies=[Depends(require_cron_secret)])
async def purge_expired_exchanges(session: AsyncSession = Depends(get_db_session)):
    """Delete expired handshakes. Called by the scheduler."""
    purged = await PkceService.purge_expired_exchanges(session)
    await session.commit()
    return PurgeExchangesResponse(exchanges_purged=purged)


@token_router.post("", response_model=LongLivedTokenResponse, status_code=201)
async def issue_extension_token(
    assertion: IdentityAssertion = Depends(get_identity_assertion),
    session: AsyncSession = Depends(get_db_session),
):
    """Issue a long-lived extension token.

    Every previous token of the user is revoked. The token is shown once.
    """
    response = await TokenService.issue_long_lived_token(session, assertion.subject_id)
    await session.commit()
    return response


@token_router.get("", response_model=list[ExtensionTokenInfo])
async def list_extension_tokens(
    assertion: IdentityAssertion = Depends(get_identity_assertion),
    session: AsyncSession = Depends(get_db_session),
):
    return await TokenService.list_tokens(session, assertion.subject_id)


@token_router.post("/revoke", response_model=RevokeTokenResponse)
async def revoke_extension_tokens(
    data: RevokeTokenRequest,
    assertion: IdentityAssertion = Depends(get_identity_assertion),
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke one extension token (``token`` given) or all of them."""
    revoked = await TokenService.revoke(session, assertion.subject_id, token=data.token)
    await session.commit()
    return RevokeTokenResponse(revoked=revoked)


@token_router.get("/validate", response_model=UserProfileResponse)
async def validate_extension_token(
    user: User = Depends(get_extension_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Validate the extension token sent as bearer and return its owner."""
    await session.commit()
    return user
