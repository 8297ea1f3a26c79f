"""Credential store: the narrow set of persistence operations the engines use.

Every operation is bounded by ``settings.store_timeout_seconds`` and surfaces
driver failures as ``CollaboratorException`` (or ``ConflictException`` for
constraint violations). Operations that must be observed atomically by
concurrent callers are single conditional statements or run under a row lock.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from functools import wraps
from typing import Any

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.config.settings import settings
from seatpass.features.auth.models import ExtensionSession, ExtensionToken, OAuthExchange
from seatpass.features.organization.models import (
    ENTITLED_STATUSES,
    Organization,
    OrganizationSeat,
    OrganizationSubscription,
    SeatStatus,
)
from seatpass.features.user.models import User
from seatpass.shared.exceptions import CollaboratorException, ConflictException

logger = logging.getLogger(__name__)

_FETCH = {"synchronize_session": "fetch"}


def store_operation(func: Callable[..., Any]) -> Callable[..., Any]:
    """Bound a store call in time and translate driver errors.

    Calls are never retried here: a timed-out query leaves the session's
    connection unusable, so the retry belongs to the caller with a new session.
    """

    @wraps(func)
    async def wrapper(self: "CredentialStore", *args: Any, **kwargs: Any) -> Any:
        try:
            async with asyncio.timeout(settings.store_timeout_seconds):
                return await func(self, *args, **kwargs)
        except TimeoutError as exc:
            logger.error(f"Store call {func.__name__} timed out")
            raise CollaboratorException("store", timed_out=True) from exc
        except IntegrityError as exc:
            logger.warning(f"Store call {func.__name__} violated a constraint: {exc.orig}")
            raise ConflictException() from exc
        except SQLAlchemyError as exc:
            logger.error(f"Store call {func.__name__} failed: {exc}")
            raise CollaboratorException("store") from exc

    return wrapper


class CredentialStore:
    """Persistence operations bound to one database session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Users

    @store_operation
    async def get_user_by_identity(self, identity: str) -> User | None:
        result = await self.session.execute(select(User).where(User.identity == identity))
        return result.scalar_one_or_none()

    @store_operation
    async def upsert_user(
        self,
        identity: str,
        email: str | None = None,
        username: str | None = None,
        overwrite: bool = False,
    ) -> User:
        """Create the user or update its profile.

        With ``overwrite=False`` only empty profile fields are filled in.
        """
        result = await self.session.execute(select(User).where(User.identity == identity))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(identity=identity, email=email or "", username=username)
            self.session.add(user)
            await self.session.flush()
            return user

        if email and (overwrite or not user.email):
            user.email = email
        if username and (overwrite or not user.username):
            user.username = username
        await self.session.flush()
        return user

    @store_operation
    async def adjust_user_credits(self, user_id: int, delta: int) -> int | None:
        """Atomically add ``delta`` to a user's credits; None if it would go negative."""
        stmt = (
            update(User)
            .where(User.id == user_id, User.credits + delta >= 0)
            .values(credits=User.credits + delta)
            .returning(User.credits)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # OAuth exchanges

    @store_operation
    async def insert_oauth_exchange(self, exchange: OAuthExchange) -> OAuthExchange:
        self.session.add(exchange)
        await self.session.flush()
        return exchange

    @store_operation
    async def get_oauth_exchange_by_state_and_redirect(
        self, state: str, redirect_uri: str, now: datetime
    ) -> OAuthExchange | None:
        """Return the usable (unexpired, unconsumed) exchange for this state and callback."""
        stmt = select(OAuthExchange).where(
            OAuthExchange.state == state,
            OAuthExchange.redirect_uri == redirect_uri,
            OAuthExchange.expires_at > now,
            OAuthExchange.consumed_at.is_(None),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @store_operation
    async def get_oauth_exchange_by_state(self, state: str) -> OAuthExchange | None:
        result = await self.session.execute(select(OAuthExchange).where(OAuthExchange.state == state))
        return result.scalar_one_or_none()

    @store_operation
    async def get_oauth_exchange_by_code(self, authorization_code: str, redirect_uri: str) -> OAuthExchange | None:
        stmt = select(OAuthExchange).where(
            OAuthExchange.authorization_code == authorization_code,
            OAuthExchange.redirect_uri == redirect_uri,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @store_operation
    async def update_oauth_exchange(self, exchange: OAuthExchange, **values: Any) -> OAuthExchange:
        for key, value in values.items():
            setattr(exchange, key, value)
        await self.session.flush()
        return exchange

    @store_operation
    async def consume_oauth_exchange(self, exchange_id: int, now: datetime) -> bool:
        """Mark the exchange consumed; False if it was already consumed or expired."""
        stmt = (
            update(OAuthExchange)
            .where(
                OAuthExchange.id == exchange_id,
                OAuthExchange.consumed_at.is_(None),
                OAuthExchange.expires_at > now,
            )
            .values(consumed_at=now)
            .returning(OAuthExchange.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @store_operation
    async def delete_oauth_exchange(self, exchange_id: int) -> None:
        await self.session.execute(
            delete(OAuthExchange).where(OAuthExchange.id == exchange_id).execution_options(**_FETCH)
        )

    @store_operation
    async def purge_oauth_exchanges(self, now: datetime) -> int:
        """Delete every exchange past its expiry, consumed or not."""
        stmt = (
            delete(OAuthExchange)
            .where(OAuthExchange.expires_at <= now)
            .returning(OAuthExchange.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    # Extension tokens

    @store_operation
    async def insert_extension_token(self, token: ExtensionToken) -> ExtensionToken:
        self.session.add(token)
        await self.session.flush()
        return token

    @store_operation
    async def revoke_extension_tokens_for_user(self, user_id: int, now: datetime) -> int:
        """Revoke every active token of a user while holding the user's row lock.

        The lock serializes concurrent issuers for the same user until the
        surrounding transaction commits.
        """
        await self.session.execute(select(User.id).where(User.id == user_id).with_for_update())
        stmt = (
            update(ExtensionToken)
            .where(ExtensionToken.user_id == user_id, ExtensionToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .returning(ExtensionToken.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    @store_operation
    async def revoke_extension_token(self, user_id: int, token_digest: str, now: datetime) -> int:
        stmt = (
            update(ExtensionToken)
            .where(
                ExtensionToken.user_id == user_id,
                ExtensionToken.token_digest == token_digest,
                ExtensionToken.revoked_at.is_(None),
            )
            .values(revoked_at=now)
            .returning(ExtensionToken.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    @store_operation
    async def get_extension_token_by_digest(self, token_digest: str) -> ExtensionToken | None:
        result = await self.session.execute(
            select(ExtensionToken).where(ExtensionToken.token_digest == token_digest)
        )
        return result.scalar_one_or_none()

    @store_operation
    async def list_extension_tokens(self, user_id: int) -> Sequence[ExtensionToken]:
        stmt = (
            select(ExtensionToken)
            .where(ExtensionToken.user_id == user_id)
            .order_by(ExtensionToken.created_at.desc(), ExtensionToken.id.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    @store_operation
    async def touch_last_used(self, token: ExtensionToken, now: datetime) -> None:
        # Savepoint so a failure here leaves the outer transaction usable
        async with self.session.begin_nested():
            token.last_used_at = now

    # Sessions

    @store_operation
    async def insert_session(self, extension_session: ExtensionSession) -> ExtensionSession:
        self.session.add(extension_session)
        await self.session.flush()
        return extension_session

    @store_operation
    async def get_session(self, session_id: str, now: datetime) -> ExtensionSession | None:
        stmt = select(ExtensionSession).where(
            ExtensionSession.session_id == session_id,
            ExtensionSession.expires_at > now,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @store_operation
    async def replace_session(
        self,
        old_session_id: str,
        identity: str,
        refresh_token_digest: str,
        new_session_id: str,
        new_refresh_token_digest: str,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Re-key a live session in one statement.

        Of two concurrent callers presenting the same refresh token only one
        matches the old session id.
        """
        stmt = (
            update(ExtensionSession)
            .where(
                ExtensionSession.session_id == old_session_id,
                ExtensionSession.identity == identity,
                ExtensionSession.refresh_token_digest == refresh_token_digest,
                ExtensionSession.expires_at > now,
            )
            .values(
                session_id=new_session_id,
                refresh_token_digest=new_refresh_token_digest,
                rotated_at=now,
                expires_at=expires_at,
            )
            .returning(ExtensionSession.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @store_operation
    async def delete_session(self, session_id: str, identity: str) -> int:
        stmt = (
            delete(ExtensionSession)
            .where(ExtensionSession.session_id == session_id, ExtensionSession.identity == identity)
            .returning(ExtensionSession.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    # Organizations and seats

    @store_operation
    async def get_organization(self, external_org_id: str) -> Organization | None:
        result = await self.session.execute(
            select(Organization).where(Organization.external_org_id == external_org_id)
        )
        return result.scalar_one_or_none()

    @store_operation
    async def get_active_seat(
        self, organization_id: int, identity: str, now: datetime | None = None
    ) -> OrganizationSeat | None:
        """Active seat for the pair.

        When ``now`` is given, seats past their expiry no longer count even if
        the sweep has not revoked them yet.
        """
        stmt = select(OrganizationSeat).where(
            OrganizationSeat.organization_id == organization_id,
            OrganizationSeat.identity == identity,
            OrganizationSeat.status == SeatStatus.ACTIVE.value,
        )
        if now is not None:
            stmt = stmt.where(or_(OrganizationSeat.expires_at.is_(None), OrganizationSeat.expires_at > now))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @store_operation
    async def list_seats_for_org(
        self, organization_id: int, include_revoked: bool = False
    ) -> Sequence[OrganizationSeat]:
        stmt = select(OrganizationSeat).where(OrganizationSeat.organization_id == organization_id)
        if not include_revoked:
            stmt = stmt.where(OrganizationSeat.status == SeatStatus.ACTIVE.value)
        result = await self.session.execute(stmt.order_by(OrganizationSeat.assigned_at, OrganizationSeat.id))
        return result.scalars().all()

    @store_operation
    async def insert_seat(self, seat: OrganizationSeat) -> OrganizationSeat:
        self.session.add(seat)
        await self.session.flush()
        return seat

    @store_operation
    async def revise_seat_status(
        self, seat_id: int, status: SeatStatus, reason: str | None, now: datetime
    ) -> OrganizationSeat | None:
        """Move an active seat to ``status`` in one conditional statement.

        Returns None when the seat is no longer active, so of two concurrent
        revocations only one gets the row back.
        """
        values: dict[str, Any] = {"status": status.value}
        if status == SeatStatus.REVOKED:
            values.update(revoked_at=now, revocation_reason=reason)
        stmt = (
            update(OrganizationSeat)
            .where(OrganizationSeat.id == seat_id, OrganizationSeat.status == SeatStatus.ACTIVE.value)
            .values(**values)
            .returning(OrganizationSeat)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @store_operation
    async def sweep_expired_seats(self, now: datetime) -> list[int | None]:
        """Revoke every active seat past its expiry in one statement.

        Returns the subscription id of each revoked seat.
        """
        stmt = (
            update(OrganizationSeat)
            .where(
                OrganizationSeat.status == SeatStatus.ACTIVE.value,
                OrganizationSeat.expires_at.is_not(None),
                OrganizationSeat.expires_at <= now,
            )
            .values(status=SeatStatus.REVOKED.value, revoked_at=now, revocation_reason="expired")
            .returning(OrganizationSeat.subscription_id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    @store_operation
    async def get_active_subscription(self, organization_id: int) -> OrganizationSubscription | None:
        stmt = (
            select(OrganizationSubscription)
            .where(
                OrganizationSubscription.organization_id == organization_id,
                OrganizationSubscription.status.in_(ENTITLED_STATUSES),
            )
            .order_by(OrganizationSubscription.created_at.desc(), OrganizationSubscription.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_subscription_for_seat(self, seat: OrganizationSeat) -> OrganizationSubscription | None:
        """The seat's own subscription if entitled, else the organization's current one."""
        if seat.subscription_id is not None:
            subscription = await self._get_subscription(seat.subscription_id)
            if subscription is not None and subscription.is_entitled:
                return subscription
        return await self.get_active_subscription(seat.organization_id)

    @store_operation
    async def _get_subscription(self, subscription_id: int) -> OrganizationSubscription | None:
        return await self.session.get(OrganizationSubscription, subscription_id)

    @store_operation
    async def claim_seat_capacity(self, subscription_id: int) -> bool:
        """Take one seat of the subscription; False when every seat is used."""
        stmt = (
            update(OrganizationSubscription)
            .where(
                OrganizationSubscription.id == subscription_id,
                OrganizationSubscription.seats_used < OrganizationSubscription.seats_total,
            )
            .values(seats_used=OrganizationSubscription.seats_used + 1)
            .returning(OrganizationSubscription.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @store_operation
    async def release_seat_capacity(self, subscription_id: int) -> None:
        stmt = (
            update(OrganizationSubscription)
            .where(OrganizationSubscription.id == subscription_id)
            .values(
                seats_used=case(
                    (OrganizationSubscription.seats_used > 0, OrganizationSubscription.seats_used - 1),
                    else_=0,
                )
            )
            .execution_options(**_FETCH)
        )
        await self.session.execute(stmt)

    @store_operation
    async def recount_seats_used(self, subscription_ids: Sequence[int]) -> int:
        """Recompute ``seats_used`` from the active seats of each subscription."""
        if not subscription_ids:
            return 0
        active_count = (
            select(func.count(OrganizationSeat.id))
            .where(
                OrganizationSeat.subscription_id == OrganizationSubscription.id,
                OrganizationSeat.status == SeatStatus.ACTIVE.value,
            )
            .scalar_subquery()
        )
        stmt = (
            update(OrganizationSubscription)
            .where(OrganizationSubscription.id.in_(subscription_ids))
            .values(seats_used=active_count)
            .returning(OrganizationSubscription.id)
            .execution_options(**_FETCH)
        )
        result = await self.session.execute(stmt)
        return len(result.scalars().all())
