"""User router (API endpoints)."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.dependencies import get_db_session
from seatpass.features.auth.dependencies import get_current_user
from seatpass.shared.security import require_cron_secret

from .models import User
from .schemas import CreditAmountRequest, CreditBalanceResponse, UserProfileResponse
from .service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=UserProfileResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get the caller's user record.

    Accepts a session access token or a long-lived extension token.
    """
    return UserProfileResponse.model_validate(current_user)


@router.post("/me/credits/consume", response_model=CreditBalanceResponse)
async def consume_credits(
    data: CreditAmountRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Spend credits from the caller's balance. Fails with 402 when short."""
    balance = await UserService.deduct_credits(session, current_user.identity, data.amount)
    await session.commit()
    return CreditBalanceResponse(identity=current_user.identity, credits=balance)


@router.post(
    "/{identity}/credits/grant",
    response_model=CreditBalanceResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def grant_credits(identity: str, data: CreditAmountRequest, session: AsyncSession = Depends(get_db_session)):
    """Add credits to a user's balance (internal callers only)."""
    balance = await UserService.grant_credits(session, identity, data.amount)
    await session.commit()
    return CreditBalanceResponse(identity=identity, credits=balance)
