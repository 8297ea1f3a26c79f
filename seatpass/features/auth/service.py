"""Token service layer: session tokens and long-lived extension tokens."""

import logging
import secrets
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from jwt.exceptions import InvalidTokenError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from seatpass.config.settings import settings
from seatpass.database.base import utcnow
from seatpass.database.store import CredentialStore
from seatpass.features.user.exceptions import UserNotFound
from seatpass.features.user.models import User
from seatpass.shared.exceptions import CollaboratorException, ConflictException

from .exceptions import (
    InvalidTokenException,
    RevocationFailedException,
    SessionInactiveException,
    TokenExpiredException,
    TokenNotFoundException,
    TokenRevokedException,
)
from .hashing import hash_token, token_digest, verify_token_hash
from .jwt_utils import (
    create_access_token,
    create_extension_token,
    create_refresh_token,
    decode_access_token,
    decode_extension_token,
    decode_refresh_token,
)
from .models import ExtensionSession, ExtensionToken
from .schemas import LongLivedTokenResponse, SessionTokenResponse

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_NAME = "Editor Extension Token"


def _new_session_id() -> str:
    return secrets.token_urlsafe(24)


class TokenService:
    """Service for extension token issuance, validation and revocation."""

    @staticmethod
    def issue_access_token(identity: str, session_id: str | None = None, now: datetime | None = None) -> str:
        return create_access_token(identity, session_id=session_id, now=now)

    @staticmethod
    def verify_access_token(token: str) -> dict[str, Any]:
        """Verify a short-lived access token and return its claims.

        Raises:
            InvalidTokenException: For any malformed, forged, expired or
                wrong-class token

        """
        try:
            return decode_access_token(token)
        except InvalidTokenError as e:
            raise InvalidTokenException() from e

    @staticmethod
    async def issue_long_lived_token(
        session: AsyncSession,
        identity: str,
        name: str = DEFAULT_TOKEN_NAME,
        now: datetime | None = None,
    ) -> LongLivedTokenResponse:
        """Issue a long-lived extension token, revoking every previous one.

        Revocation and insertion happen in the caller's transaction while the
        user row is locked, so at most one unrevoked token exists per user.
        The raw token is returned here and nowhere else.

        Raises:
            UserNotFound: If the identity has no user record
            RevocationFailedException: If prior tokens could not be revoked

        """
        store = CredentialStore(session)
        user = await store.get_user_by_identity(identity)
        if user is None:
            raise UserNotFound()

        now = now or utcnow()
        try:
            revoked = await store.revoke_extension_tokens_for_user(user.id, now)
        except (CollaboratorException, ConflictException) as e:
            logger.error(f"Could not revoke previous extension tokens for {identity}")
            raise RevocationFailedException() from e

        lifetime = timedelta(days=settings.extension_token_expire_days)
        token = create_extension_token(identity, expires_delta=lifetime, now=now)
        token_hash = await run_in_threadpool(hash_token, token)

        record = ExtensionToken(
            user_id=user.id,
            token_digest=token_digest(token),
            token_hash=token_hash,
            name=name,
            created_at=now,
            expires_at=now + lifetime,
        )
        await store.insert_extension_token(record)

        logger.info(f"Extension token issued for {identity} ({revoked} previous revoked)")
        return LongLivedTokenResponse(
            access_token=token,
            expires_in=int(lifetime.total_seconds()),
            expires_at=record.expires_at,
        )

    @staticmethod
    async def verify_long_lived_token(session: AsyncSession, token: str, now: datetime | None = None) -> User:
        """Validate a long-lived extension token against its stored record.

        Raises:
            InvalidTokenException: Bad signature, claims or token class
            TokenNotFoundException: No stored record matches the token
            TokenRevokedException: The record was revoked
            TokenExpiredException: The record is past its expiry

        """
        try:
            payload = decode_extension_token(token)
        except InvalidTokenError as e:
            raise InvalidTokenException() from e

        store = CredentialStore(session)
        record = await store.get_extension_token_by_digest(token_digest(token))
        if record is None or not await run_in_threadpool(verify_token_hash, token, record.token_hash):
            raise TokenNotFoundException()

        now = now or utcnow()
        if record.is_revoked:
            raise TokenRevokedException()
        if record.is_expired(now):
            raise TokenExpiredException()

        user = await store.get_user_by_identity(payload["sub"])
        if user is None or user.id != record.user_id:
            raise TokenNotFoundException()

        try:
            await store.touch_last_used(record, now)
        except (CollaboratorException, ConflictException):
            logger.warning(f"Could not record last use of extension token {record.id}")

        return user

    @staticmethod
    async def open_session(
        session: AsyncSession,
        identity: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> SessionTokenResponse:
        """Start an extension session and return its access/refresh pair."""
        now = now or utcnow()
        session_id = _new_session_id()
        refresh_token = create_refresh_token(identity, session_id, now=now)
        access_token = create_access_token(identity, session_id=session_id, now=now)

        await CredentialStore(session).insert_session(
            ExtensionSession(
                session_id=session_id,
                identity=identity,
                refresh_token_digest=token_digest(refresh_token),
                created_at=now,
                expires_at=now + timedelta(days=settings.refresh_token_expire_days),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

        logger.info(f"Extension session opened for {identity}")
        return SessionTokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.access_token_expire_minutes * 60,
        )

    @staticmethod
    async def rotate_session(
        session: AsyncSession, refresh_token: str, now: datetime | None = None
    ) -> SessionTokenResponse:
        """Exchange a refresh token for a new pair, superseding the old one.

        Raises:
            InvalidTokenException: If the refresh token does not verify
            SessionInactiveException: If the session is gone, expired or was
                already rotated with this token

        """
        try:
            payload = decode_refresh_token(refresh_token)
        except InvalidTokenError as e:
            raise InvalidTokenException() from e

        identity = payload["sub"]
        now = now or utcnow()
        new_session_id = _new_session_id()
        new_refresh_token = create_refresh_token(identity, new_session_id, now=now)

        replaced = await CredentialStore(session).replace_session(
            payload["sid"],
            identity,
            token_digest(refresh_token),
            new_session_id,
            token_digest(new_refresh_token),
            expires_at=now + timedelta(days=settings.refresh_token_expire_days),
            now=now,
        )
        if not replaced:
            logger.warning(f"Refresh rejected for {identity}: session inactive")
            raise SessionInactiveException()

        logger.info(f"Extension session rotated for {identity}")
        return SessionTokenResponse(
            access_token=create_access_token(identity, session_id=new_session_id, now=now),
            refresh_token=new_refresh_token,
            expires_in=settings.access_token_expire_minutes * 60,
        )

    @staticmethod
    async def end_session(session: AsyncSession, refresh_token: str) -> bool:
        """End the session a refresh token belongs to. Ending it twice is a no-op."""
        try:
            payload = decode_refresh_token(refresh_token)
        except InvalidTokenError as e:
            raise InvalidTokenException() from e

        deleted = await CredentialStore(session).delete_session(payload["sid"], payload["sub"])
        if deleted:
            logger.info(f"Extension session ended for {payload['sub']}")
        return deleted > 0

    @staticmethod
    async def revoke(
        session: AsyncSession, identity: str, token: str | None = None, now: datetime | None = None
    ) -> int:
        """Revoke one extension token of the user, or all of them.

        Returns the number of tokens that changed state; repeating the call
        returns 0.
        """
        store = CredentialStore(session)
        user = await store.get_user_by_identity(identity)
        if user is None:
            raise UserNotFound()

        now = now or utcnow()
        if token is not None:
            count = await store.revoke_extension_token(user.id, token_digest(token), now)
        else:
            count = await store.revoke_extension_tokens_for_user(user.id, now)

        logger.info(f"Revoked {count} extension token(s) for {identity}")
        return count

    @staticmethod
    async def list_tokens(session: AsyncSession, identity: str) -> Sequence[ExtensionToken]:
        store = CredentialStore(session)
        user = await store.get_user_by_identity(identity)
        if user is None:
            raise UserNotFound()
        return await store.list_extension_tokens(user.id)
