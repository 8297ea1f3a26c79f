"""Tests for the entitlement engine (EntitlementService) and credit conversion."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from seatpass.database.store import CredentialStore
from seatpass.features.organization.credits import credits_to_currency, currency_to_credits
from seatpass.features.organization.exceptions import (
    NoActiveSeat,
    NoActiveSubscription,
    OrganizationNotFound,
    SeatAlreadyAssigned,
    SeatLimitReached,
    SeatNotFound,
)
from seatpass.features.organization.models import (
    OrganizationSeat,
    OrganizationSubscription,
    SeatRole,
    SeatStatus,
    SubscriptionStatus,
)
from seatpass.features.organization.service import EntitlementService
from seatpass.shared.exceptions import RequestValidationException


async def _subscription(session, subscription_id: int) -> OrganizationSubscription:
    stmt = select(OrganizationSubscription).where(OrganizationSubscription.id == subscription_id)
    subscription = (await session.execute(stmt)).scalar_one()
    await session.refresh(subscription)
    return subscription


# credits


class TestCredits:
    @pytest.mark.parametrize(
        ("amount", "expected"),
        [(Decimal("10"), 714), (Decimal("0.014"), 1), (Decimal("0.013"), 0), (0, 0), ("1.00", 71)],
    )
    def test_currency_to_credits_rounds_down(self, amount, expected):
        assert currency_to_credits(amount) == expected

    @pytest.mark.parametrize(
        ("credits", "expected"),
        [(714, Decimal("10.00")), (1, Decimal("0.01")), (0, Decimal("0.00")), (36, Decimal("0.50"))],
    )
    def test_credits_to_currency_rounds_half_up(self, credits, expected):
        assert credits_to_currency(credits) == expected

    def test_custom_unit_price(self):
        assert currency_to_credits(Decimal("5"), unit_price=Decimal("0.5")) == 10
        assert credits_to_currency(10, unit_price=Decimal("0.5")) == Decimal("5.00")

    def test_negative_values_are_rejected(self):
        with pytest.raises(ValueError):
            currency_to_credits(Decimal("-1"))
        with pytest.raises(ValueError):
            credits_to_currency(-1)


# EntitlementService.get_org_credits


class TestGetOrgCredits:
    async def test_seat_holder_sees_pool(self, session, make_org, make_seat):
        org, sub = await make_org(total_credits=1000, used_credits=250)
        await make_seat(org, sub, "user_123")

        snapshot = await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")
        assert snapshot.total_credits == 1000
        assert snapshot.used_credits == 250
        assert snapshot.remaining_credits == 750
        assert snapshot.remaining_value == Decimal("10.50")
        assert snapshot.seat_role == SeatRole.MEMBER

    async def test_remaining_never_negative(self, session, make_org, make_seat):
        org, sub = await make_org(total_credits=100, used_credits=130)
        await make_seat(org, sub, "user_123")

        snapshot = await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")
        assert snapshot.remaining_credits == 0

    async def test_exhausted_pool_is_not_an_error(self, session, make_org, make_seat):
        org, sub = await make_org(total_credits=100, used_credits=100)
        await make_seat(org, sub, "user_123")

        snapshot = await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")
        assert snapshot.remaining_credits == 0
        assert snapshot.remaining_value == Decimal("0.00")

    async def test_no_seat_is_rejected(self, session, make_org):
        org, _ = await make_org()
        with pytest.raises(NoActiveSeat):
            await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")

    async def test_unknown_org_looks_like_no_seat(self, session):
        with pytest.raises(NoActiveSeat):
            await EntitlementService.get_org_credits(session, "org_missing", "user_123")

    async def test_revoked_seat_is_rejected(self, session, make_org, make_seat):
        org, sub = await make_org()
        await make_seat(org, sub, "user_123", status=SeatStatus.REVOKED)
        with pytest.raises(NoActiveSeat):
            await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")

    async def test_unswept_expired_seat_is_rejected(self, session, make_org, make_seat):
        org, sub = await make_org()
        await make_seat(org, sub, "user_123", expires_at=datetime.now(UTC) - timedelta(minutes=1))
        with pytest.raises(NoActiveSeat):
            await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")

    async def test_falls_back_to_current_subscription(self, session, make_org, make_seat):
        org, old_sub = await make_org(status=SubscriptionStatus.CANCELED, total_credits=10)
        current = OrganizationSubscription(
            organization_id=org.id, status=SubscriptionStatus.TRIALING.value, total_credits=500
        )
        session.add(current)
        await session.commit()
        await make_seat(org, old_sub, "user_123")

        snapshot = await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")
        assert snapshot.total_credits == 500
        assert snapshot.subscription_status == SubscriptionStatus.TRIALING


# EntitlementService.assign_seat / revoke_seat


class TestSeatAssignment:
    async def test_assign_takes_capacity(self, session, make_org):
        org, sub = await make_org(seats_total=2)
        seat = await EntitlementService.assign_seat(
            session, org.external_org_id, "user_123", role=SeatRole.ADMIN, assigned_by="admin_1"
        )

        assert seat.status == SeatStatus.ACTIVE
        assert seat.subscription_id == sub.id
        assert (await _subscription(session, sub.id)).seats_used == 1

    async def test_second_active_seat_is_rejected(self, session, make_org):
        org, _ = await make_org()
        await EntitlementService.assign_seat(session, org.external_org_id, "user_123")
        with pytest.raises(SeatAlreadyAssigned):
            await EntitlementService.assign_seat(session, org.external_org_id, "user_123")

    async def test_full_subscription_is_rejected(self, session, make_org):
        org, _ = await make_org(seats_total=1)
        await EntitlementService.assign_seat(session, org.external_org_id, "user_a")
        with pytest.raises(SeatLimitReached):
            await EntitlementService.assign_seat(session, org.external_org_id, "user_b")

    async def test_requires_active_subscription(self, session, make_org):
        org, _ = await make_org(status=SubscriptionStatus.PAST_DUE)
        with pytest.raises(NoActiveSubscription):
            await EntitlementService.assign_seat(session, org.external_org_id, "user_123")

    async def test_unknown_org(self, session):
        with pytest.raises(OrganizationNotFound):
            await EntitlementService.assign_seat(session, "org_missing", "user_123")

    async def test_past_expiry_is_rejected(self, session, make_org):
        org, _ = await make_org()
        with pytest.raises(RequestValidationException):
            await EntitlementService.assign_seat(
                session, org.external_org_id, "user_123", expires_at=datetime.now(UTC) - timedelta(days=1)
            )

    async def test_expired_seat_is_replaced(self, session, make_org, make_seat):
        org, sub = await make_org(seats_used=1)
        old = await make_seat(org, sub, "user_123", expires_at=datetime.now(UTC) - timedelta(days=1))

        seat = await EntitlementService.assign_seat(session, org.external_org_id, "user_123")
        assert seat.id != old.id
        assert old.status == SeatStatus.REVOKED
        assert old.revocation_reason == "expired"
        assert (await _subscription(session, sub.id)).seats_used == 1

    async def test_revoke_frees_capacity(self, session, make_org):
        org, sub = await make_org(seats_total=1)
        await EntitlementService.assign_seat(session, org.external_org_id, "user_a")

        seat = await EntitlementService.revoke_seat(session, org.external_org_id, "user_a", "left team", "admin_1")
        assert seat.status == SeatStatus.REVOKED
        assert seat.revocation_reason == "left team"
        assert seat.revoked_at is not None
        assert (await _subscription(session, sub.id)).seats_used == 0

        await EntitlementService.assign_seat(session, org.external_org_id, "user_b")

    async def test_concurrent_revokes_release_capacity_once(self, session, make_org, monkeypatch):
        org, sub = await make_org(seats_total=3)
        for identity in ("user_a", "user_b", "user_c"):
            await EntitlementService.assign_seat(session, org.external_org_id, identity)

        original_get_active_seat = CredentialStore.get_active_seat
        interleaved = False

        async def get_active_seat_then_race(self, *args, **kwargs):
            nonlocal interleaved
            seat = await original_get_active_seat(self, *args, **kwargs)
            if not interleaved:
                interleaved = True
                # Another admin revokes the same seat between our read and our update
                await EntitlementService.revoke_seat(session, org.external_org_id, "user_a", "by other admin")
            return seat

        monkeypatch.setattr(CredentialStore, "get_active_seat", get_active_seat_then_race)

        with pytest.raises(SeatNotFound):
            await EntitlementService.revoke_seat(session, org.external_org_id, "user_a", "left team")

        assert (await _subscription(session, sub.id)).seats_used == 2
        seat = (
            await session.execute(select(OrganizationSeat).where(OrganizationSeat.identity == "user_a"))
        ).scalar_one()
        assert seat.revocation_reason == "by other admin"

    async def test_revoke_racing_the_sweep_keeps_expired_reason(self, session, make_org, make_seat, monkeypatch):
        org, sub = await make_org(seats_used=1)
        await make_seat(org, sub, "user_a", expires_at=datetime.now(UTC) - timedelta(minutes=1))

        original_get_active_seat = CredentialStore.get_active_seat
        swept = False

        async def get_active_seat_then_sweep(self, *args, **kwargs):
            nonlocal swept
            seat = await original_get_active_seat(self, *args, **kwargs)
            if not swept:
                swept = True
                await EntitlementService.sweep_expired_seats(session)
            return seat

        monkeypatch.setattr(CredentialStore, "get_active_seat", get_active_seat_then_sweep)

        with pytest.raises(SeatNotFound):
            await EntitlementService.revoke_seat(session, org.external_org_id, "user_a", "left team")

        assert (await _subscription(session, sub.id)).seats_used == 0
        seat = (
            await session.execute(select(OrganizationSeat).where(OrganizationSeat.identity == "user_a"))
        ).scalar_one()
        assert seat.revocation_reason == "expired"

    async def test_revoke_without_seat(self, session, make_org):
        org, _ = await make_org()
        with pytest.raises(SeatNotFound):
            await EntitlementService.revoke_seat(session, org.external_org_id, "user_123", "cleanup")

    async def test_revoked_seat_loses_credit_access(self, session, make_org, make_seat):
        org, sub = await make_org(seats_used=1)
        await make_seat(org, sub, "user_123")

        await EntitlementService.revoke_seat(session, org.external_org_id, "user_123", "left team")
        with pytest.raises(NoActiveSeat):
            await EntitlementService.get_org_credits(session, org.external_org_id, "user_123")

    async def test_list_seats(self, session, make_org, make_seat):
        org, sub = await make_org()
        await make_seat(org, sub, "user_a")
        await make_seat(org, sub, "user_b", status=SeatStatus.REVOKED)

        active = await EntitlementService.list_seats(session, org.external_org_id)
        everything = await EntitlementService.list_seats(session, org.external_org_id, include_revoked=True)
        assert [s.identity for s in active] == ["user_a"]
        assert len(everything) == 2


# EntitlementService.sweep_expired_seats


class TestSweepExpiredSeats:
    async def test_sweep_revokes_and_recounts(self, session, make_org, make_seat):
        org, sub = await make_org(seats_used=3)
        past = datetime.now(UTC) - timedelta(hours=1)
        await make_seat(org, sub, "user_a", expires_at=past)
        await make_seat(org, sub, "user_b", expires_at=past)
        await make_seat(org, sub, "user_c", expires_at=datetime.now(UTC) + timedelta(days=1))

        result = await EntitlementService.sweep_expired_seats(session)
        assert result.seats_revoked == 2
        assert result.subscriptions_updated == 1

        seats = (await session.execute(select(OrganizationSeat).order_by(OrganizationSeat.identity))).scalars().all()
        assert [s.status for s in seats] == [SeatStatus.REVOKED, SeatStatus.REVOKED, SeatStatus.ACTIVE]
        assert seats[0].revocation_reason == "expired"
        assert (await _subscription(session, sub.id)).seats_used == 1

    async def test_sweep_is_idempotent(self, session, make_org, make_seat):
        org, sub = await make_org(seats_used=1)
        await make_seat(org, sub, "user_a", expires_at=datetime.now(UTC) - timedelta(hours=1))

        first = await EntitlementService.sweep_expired_seats(session)
        second = await EntitlementService.sweep_expired_seats(session)
        assert first.seats_revoked == 1
        assert second.seats_revoked == 0
        assert second.subscriptions_updated == 0

    async def test_unlimited_seats_are_never_swept(self, session, make_org, make_seat):
        org, sub = await make_org(seats_used=1)
        await make_seat(org, sub, "user_a")

        result = await EntitlementService.sweep_expired_seats(session)
        assert result.seats_revoked == 0
