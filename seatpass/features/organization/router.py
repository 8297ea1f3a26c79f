"""Organization router: pooled credits and seat management."""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.dependencies import get_db_session
from seatpass.features.auth.dependencies import get_current_identity
from seatpass.features.identity.schemas import IdentityAssertion
from seatpass.shared.security import require_cron_secret

from .credits import currency_to_credits
from .dependencies import require_org_admin
from .schemas import AssignSeatRequest, CreditQuoteResponse, OrgCreditsResponse, SeatResponse, SweepResponse
from .service import EntitlementService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/organizations", tags=["Organizations"])


@router.get("/credits/quote", response_model=CreditQuoteResponse)
async def quote_credits(amount: Decimal = Query(..., ge=0, max_digits=12, decimal_places=2)):
    """Number of credits a currency amount buys."""
    return CreditQuoteResponse(amount=amount, credits=currency_to_credits(amount))


@router.post("/seats/sweep", response_model=SweepResponse, dependencies=[Depends(require_cron_secret)])
async def sweep_expired_seats(session: AsyncSession = Depends(get_db_session)):
    """Revoke every expired seat. Called by the scheduler."""
    result = await EntitlementService.sweep_expired_seats(session)
    await session.commit()
    return result


@router.get("/{org_id}/credits", response_model=OrgCreditsResponse)
async def get_org_credits(
    org_id: str,
    identity: str = Depends(get_current_identity),
    session: AsyncSession = Depends(get_db_session),
):
    """Credit pool of the organization, for holders of an active seat."""
    return await EntitlementService.get_org_credits(session, org_id, identity)


@router.get("/{org_id}/seats", response_model=list[SeatResponse])
async def list_seats(
    org_id: str,
    include_revoked: bool = False,
    _: IdentityAssertion = Depends(require_org_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await EntitlementService.list_seats(session, org_id, include_revoked=include_revoked)


@router.post("/{org_id}/seats", response_model=SeatResponse, status_code=201)
async def assign_seat(
    org_id: str,
    data: AssignSeatRequest,
    admin: IdentityAssertion = Depends(require_org_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Assign a seat on the organization's active subscription."""
    seat = await EntitlementService.assign_seat(
        session,
        org_id,
        data.identity,
        email=data.email,
        role=data.role,
        expires_at=data.expires_at,
        assigned_by=admin.subject_id,
    )
    await session.commit()
    return seat


@router.delete("/{org_id}/seats/{identity}", response_model=SeatResponse)
async def revoke_seat(
    org_id: str,
    identity: str,
    reason: str = Query("revoked_by_admin", min_length=1, max_length=255),
    admin: IdentityAssertion = Depends(require_org_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke a seat and free its capacity."""
    seat = await EntitlementService.revoke_seat(session, org_id, identity, reason, revoked_by=admin.subject_id)
    await session.commit()
    return seat
