"""PKCE handshake between the editor extension and the web sign-in page.

Lifecycle of an exchange record::

    created -> identity-attached -> code-attached -> consumed

Every transition requires the record to be unexpired; a consumed record is
never usable again.
"""

import logging
from datetime import datetime, timedelta
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.config.settings import settings
from seatpass.database.base import utcnow
from seatpass.database.store import CredentialStore
from seatpass.features.user.service import UserService
from seatpass.shared.exceptions import ConflictException, RequestValidationException

from .exceptions import ExchangeConflictException, InvalidOrExpiredCodeException, SessionExpiredException
from .hashing import (
    compute_code_challenge,
    generate_code,
    generate_code_verifier,
    generate_state,
    verify_code_challenge,
)
from .models import OAuthExchange
from .schemas import AttachCodeResponse, CompleteResponse, InitiateResponse, SessionTokenResponse
from .service import TokenService

logger = logging.getLogger(__name__)

CHALLENGE_METHOD = "S256"
SIGN_IN_PATH = "/auth/extension/sign-in"


def build_auth_url(state: str, redirect_uri: str, code: str, code_challenge: str) -> str:
    query = urlencode(
        {
            "state": state,
            "redirect_uri": redirect_uri,
            "code": code,
            "code_challenge": code_challenge,
            "code_challenge_method": CHALLENGE_METHOD,
        }
    )
    return f"{settings.app_base_url.rstrip('/')}{SIGN_IN_PATH}?{query}"


class PkceService:
    """Service driving the PKCE exchange records."""

    @staticmethod
    async def initiate(
        session: AsyncSession,
        redirect_uri: str,
        state: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        now: datetime | None = None,
    ) -> InitiateResponse:
        """Start a handshake and persist its exchange record.

        A client-supplied challenge is trusted as is. Without one the server
        generates the verifier pair and returns the verifier in this response
        only.

        Raises:
            RequestValidationException: Missing redirect_uri or unsupported method
            ExchangeConflictException: If an unexpired handshake holds the state

        """
        if not redirect_uri:
            raise RequestValidationException("redirect_uri is required")
        method = code_challenge_method or CHALLENGE_METHOD
        if method != CHALLENGE_METHOD:
            raise RequestValidationException("Only the S256 code_challenge_method is supported")

        code_verifier = None
        if code_challenge is None:
            code_verifier = generate_code_verifier()
            code_challenge = compute_code_challenge(code_verifier)

        now = now or utcnow()
        store = CredentialStore(session)
        if state is not None:
            stale = await store.get_oauth_exchange_by_state(state)
            if stale is not None and stale.is_expired(now):
                await store.delete_oauth_exchange(stale.id)

        exchange = OAuthExchange(
            state=state or generate_state(),
            code_challenge=code_challenge,
            code_challenge_method=method,
            code_verifier=code_verifier,
            redirect_uri=redirect_uri,
            authorization_code=generate_code(32),
            created_at=now,
            expires_at=now + timedelta(minutes=settings.oauth_exchange_ttl_minutes),
        )
        try:
            await store.insert_oauth_exchange(exchange)
        except ConflictException as e:
            raise ExchangeConflictException("State already in use") from e

        logger.info(f"PKCE handshake initiated for {redirect_uri}")
        return InitiateResponse(
            auth_url=build_auth_url(exchange.state, redirect_uri, exchange.authorization_code, code_challenge),
            state=exchange.state,
            code_challenge=code_challenge,
            code_challenge_method=method,
            code_verifier=code_verifier,
            expires_at=exchange.expires_at,
        )

    @staticmethod
    async def complete_with_identity(
        session: AsyncSession,
        state: str,
        identity: str,
        redirect_uri: str,
        email: str | None = None,
        now: datetime | None = None,
    ) -> CompleteResponse:
        """Bind a verified identity to the handshake for this state and callback.

        The redirect_uri must match the one the handshake was started with.
        Calling again rebinds the identity.
        """
        store = CredentialStore(session)
        exchange = await store.get_oauth_exchange_by_state_and_redirect(state, redirect_uri, now or utcnow())
        if exchange is None:
            logger.warning("PKCE completion rejected: no usable exchange for state and redirect_uri")
            raise InvalidOrExpiredCodeException()

        await store.update_oauth_exchange(exchange, identity=identity)
        await UserService.provision_user(session, identity, email=email, verified=True)

        logger.info(f"PKCE handshake completed for {identity}")
        return CompleteResponse(
            state=exchange.state,
            redirect_uri=exchange.redirect_uri,
            authorization_code=exchange.authorization_code,
        )

    @staticmethod
    async def attach_authorization_code(
        session: AsyncSession,
        state: str,
        identity: str,
        authorization_code: str,
        email: str | None = None,
        username: str | None = None,
        now: datetime | None = None,
    ) -> AttachCodeResponse:
        """Store a client-issued authorization code and identity on the handshake.

        An expired record is deleted before ``SessionExpiredException`` is
        raised; the caller must commit for the deletion to persist.
        """
        store = CredentialStore(session)
        exchange = await store.get_oauth_exchange_by_state(state)
        if exchange is None or exchange.consumed_at is not None:
            raise InvalidOrExpiredCodeException()
        if exchange.is_expired(now):
            await store.delete_oauth_exchange(exchange.id)
            logger.info("Expired PKCE exchange deleted")
            raise SessionExpiredException()

        try:
            await store.update_oauth_exchange(exchange, authorization_code=authorization_code, identity=identity)
        except ConflictException as e:
            raise ExchangeConflictException("Authorization code already in use") from e
        await UserService.provision_user(session, identity, email=email, username=username, verified=False)

        logger.info(f"Authorization code attached for {identity}")
        return AttachCodeResponse(authorization_code=exchange.authorization_code, redirect_uri=exchange.redirect_uri)

    @staticmethod
    async def exchange_code(
        session: AsyncSession,
        code: str,
        code_verifier: str,
        redirect_uri: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> SessionTokenResponse:
        """Consume a completed handshake and open an extension session.

        A wrong verifier burns the record so the code cannot be retried.

        Raises:
            InvalidOrExpiredCodeException: Unknown/expired code or wrong verifier
            ExchangeConflictException: Handshake not completed or already consumed

        """
        now = now or utcnow()
        store = CredentialStore(session)
        exchange = await store.get_oauth_exchange_by_code(code, redirect_uri)
        if exchange is None or exchange.is_expired(now):
            raise InvalidOrExpiredCodeException()
        if exchange.consumed_at is not None:
            raise ExchangeConflictException("Authorization code already used")
        if exchange.identity is None:
            raise ExchangeConflictException("Authorization not completed")

        if not verify_code_challenge(code_verifier, exchange.code_challenge):
            await store.consume_oauth_exchange(exchange.id, now)
            logger.warning(f"PKCE verifier mismatch for {exchange.identity}, exchange burned")
            raise InvalidOrExpiredCodeException()

        if not await store.consume_oauth_exchange(exchange.id, now):
            raise ExchangeConflictException("Authorization code already used")

        return await TokenService.open_session(session, exchange.identity, ip_address, user_agent, now=now)

    @staticmethod
    async def purge_expired_exchanges(session: AsyncSession, now: datetime | None = None) -> int:
        """Delete handshakes past their expiry. Returns the number removed.

        Unexpired consumed records are kept so a replayed code still
        conflicts until it expires.
        """
        purged = await CredentialStore(session).purge_oauth_exchanges(now or utcnow())
        if purged:
            logger.info(f"Purged {purged} expired PKCE exchange(s)")
        return purged
