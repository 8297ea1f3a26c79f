"""Entitlement service layer: organization seats and pooled credits."""

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.base import utcnow
from seatpass.database.store import CredentialStore
from seatpass.shared.exceptions import ConflictException, RequestValidationException

from .credits import credits_to_currency
from .exceptions import (
    NoActiveSeat,
    NoActiveSubscription,
    OrganizationNotFound,
    SeatAlreadyAssigned,
    SeatLimitReached,
    SeatNotFound,
)
from .models import Organization, OrganizationSeat, SeatRole, SeatStatus
from .schemas import OrgCreditsResponse, SweepResponse

logger = logging.getLogger(__name__)

EXPIRED_REASON = "expired"


class EntitlementService:
    """Service for seat entitlements of organization subscriptions."""

    @staticmethod
    async def _get_organization(store: CredentialStore, org_id: str) -> Organization:
        organization = await store.get_organization(org_id)
        if organization is None:
            raise OrganizationNotFound()
        return organization

    @staticmethod
    async def get_org_credits(
        session: AsyncSession, org_id: str, identity: str, now: datetime | None = None
    ) -> OrgCreditsResponse:
        """Credit pool of the organization as seen by one of its seat holders.

        An unknown organization is reported as ``NoActiveSeat`` so callers
        cannot probe which organizations exist.

        Raises:
            NoActiveSeat: If the identity has no unexpired active seat

        """
        store = CredentialStore(session)
        organization = await store.get_organization(org_id)
        if organization is None:
            raise NoActiveSeat()

        seat = await store.get_active_seat(organization.id, identity, now or utcnow())
        if seat is None:
            raise NoActiveSeat()

        subscription = await store.get_subscription_for_seat(seat)
        total = subscription.total_credits if subscription else 0
        used = subscription.used_credits if subscription else 0
        remaining = max(0, total - used)

        return OrgCreditsResponse(
            organization_id=organization.external_org_id,
            organization_name=organization.name,
            seat_role=seat.role,
            subscription_status=subscription.status if subscription else None,
            total_credits=total,
            used_credits=used,
            remaining_credits=remaining,
            remaining_value=credits_to_currency(remaining),
        )

    @staticmethod
    async def is_org_admin(session: AsyncSession, org_id: str, identity: str, now: datetime | None = None) -> bool:
        store = CredentialStore(session)
        organization = await store.get_organization(org_id)
        if organization is None:
            return False
        seat = await store.get_active_seat(organization.id, identity, now or utcnow())
        return seat is not None and seat.role == SeatRole.ADMIN

    @staticmethod
    async def list_seats(
        session: AsyncSession, org_id: str, include_revoked: bool = False
    ) -> Sequence[OrganizationSeat]:
        store = CredentialStore(session)
        organization = await EntitlementService._get_organization(store, org_id)
        return await store.list_seats_for_org(organization.id, include_revoked=include_revoked)

    @staticmethod
    async def assign_seat(
        session: AsyncSession,
        org_id: str,
        identity: str,
        email: str | None = None,
        role: SeatRole = SeatRole.MEMBER,
        expires_at: datetime | None = None,
        assigned_by: str | None = None,
        now: datetime | None = None,
    ) -> OrganizationSeat:
        """Give an identity a seat on the organization's current subscription.

        Raises:
            OrganizationNotFound: Unknown organization
            NoActiveSubscription: No active or trialing subscription
            SeatAlreadyAssigned: The identity already holds an active seat
            SeatLimitReached: Every seat of the subscription is taken

        """
        now = now or utcnow()
        if expires_at is not None and expires_at <= now:
            raise RequestValidationException("expires_at must be in the future")

        store = CredentialStore(session)
        organization = await EntitlementService._get_organization(store, org_id)
        subscription = await store.get_active_subscription(organization.id)
        if subscription is None:
            raise NoActiveSubscription()

        existing = await store.get_active_seat(organization.id, identity)
        if existing is not None:
            if not existing.is_expired(now):
                raise SeatAlreadyAssigned()
            # Free the pair before the sweep gets to it
            await EntitlementService._release(store, existing, EXPIRED_REASON, now)

        if not await store.claim_seat_capacity(subscription.id):
            raise SeatLimitReached()

        try:
            seat = await store.insert_seat(
                OrganizationSeat(
                    organization_id=organization.id,
                    subscription_id=subscription.id,
                    identity=identity,
                    email=email,
                    role=role.value,
                    status=SeatStatus.ACTIVE.value,
                    expires_at=expires_at,
                    assigned_by=assigned_by,
                    assigned_at=now,
                )
            )
        except ConflictException as e:
            raise SeatAlreadyAssigned() from e

        logger.info(f"Seat assigned in {org_id} to {identity} by {assigned_by}")
        return seat

    @staticmethod
    async def revoke_seat(
        session: AsyncSession,
        org_id: str,
        identity: str,
        reason: str,
        revoked_by: str | None = None,
        now: datetime | None = None,
    ) -> OrganizationSeat:
        """Revoke the identity's active seat and give its capacity back.

        Raises:
            SeatNotFound: If the identity holds no active seat

        """
        store = CredentialStore(session)
        organization = await store.get_organization(org_id)
        if organization is None:
            raise SeatNotFound()
        seat = await store.get_active_seat(organization.id, identity)
        if seat is None:
            raise SeatNotFound()

        revoked = await EntitlementService._release(store, seat, reason, now or utcnow())
        if revoked is None:
            # Revoked or swept by someone else since the read above
            raise SeatNotFound()
        logger.info(f"Seat revoked in {org_id} for {identity} by {revoked_by}: {reason}")
        return revoked

    @staticmethod
    async def _release(
        store: CredentialStore, seat: OrganizationSeat, reason: str, now: datetime
    ) -> OrganizationSeat | None:
        """Revoke the seat if it is still active and give its capacity back.

        Capacity is released only by the caller that actually revoked it.
        """
        revoked = await store.revise_seat_status(seat.id, SeatStatus.REVOKED, reason, now)
        if revoked is not None and revoked.subscription_id is not None:
            await store.release_seat_capacity(revoked.subscription_id)
        return revoked

    @staticmethod
    async def sweep_expired_seats(session: AsyncSession, now: datetime | None = None) -> SweepResponse:
        """Revoke every seat past its expiry and recount the affected subscriptions.

        Running it again without new expiries changes nothing.
        """
        store = CredentialStore(session)
        subscription_ids = await store.sweep_expired_seats(now or utcnow())
        touched = sorted({sub_id for sub_id in subscription_ids if sub_id is not None})
        updated = await store.recount_seats_used(touched)

        if subscription_ids:
            logger.info(f"Seat sweep revoked {len(subscription_ids)} seat(s) across {updated} subscription(s)")
        return SweepResponse(seats_revoked=len(subscription_ids), subscriptions_updated=updated)
