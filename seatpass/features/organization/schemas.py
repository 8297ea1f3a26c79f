"""Organization schemas (DTOs)."""

from datetime import datetime
from decimal import Decimal

from pydantic import AwareDatetime, BaseModel, EmailStr, Field

from .models import SeatRole, SeatStatus


class OrgCreditsResponse(BaseModel):
    """Credit pool visible to one seat holder."""

    organization_id: str
    organization_name: str
    seat_role: SeatRole
    subscription_status: str | None = None
    total_credits: int
    used_credits: int
    remaining_credits: int
    remaining_value: Decimal


class AssignSeatRequest(BaseModel):
    identity: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    role: SeatRole = SeatRole.MEMBER
    expires_at: AwareDatetime | None = None


class SeatResponse(BaseModel):
    id: int
    identity: str
    email: str | None = None
    role: SeatRole
    status: SeatStatus
    expires_at: datetime | None = None
    assigned_by: str | None = None
    assigned_at: datetime
    revoked_at: datetime | None = None
    revocation_reason: str | None = None

    model_config = {"from_attributes": True}


class SweepResponse(BaseModel):
    seats_revoked: int
    subscriptions_updated: int


class CreditQuoteResponse(BaseModel):
    amount: Decimal
    credits: int
