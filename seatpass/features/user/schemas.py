"""User schemas (DTOs)."""

from pydantic import BaseModel, Field

from .models import PlanType


class UserProfileResponse(BaseModel):
    """Public fields of a user record."""

    identity: str
    email: str
    username: str | None = None
    plan_type: PlanType
    credits: int

    model_config = {"from_attributes": True}


class CreditAmountRequest(BaseModel):
    amount: int = Field(..., gt=0)


class CreditBalanceResponse(BaseModel):
    identity: str
    credits: int
