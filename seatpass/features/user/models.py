"""User domain models."""

from enum import StrEnum

from sqlalchemy import CheckConstraint, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from seatpass.database.base import Base, TimestampMixin


class PlanType(StrEnum):
    """Billing plan of an individual account.

    CANCELED is the soft-deleted state: user records are never removed.
    """

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    TEAMS = "teams"
    CANCELED = "canceled"


class User(Base, TimestampMixin):
    """User record keyed by the identity provider's subject id.

    Created on first successful authentication or webhook provisioning.
    """

    __tablename__ = "users"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),)

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity (owned by the identity provider)
    identity: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Profile
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    username: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Billing
    plan_type: Mapped[str] = mapped_column(
        Enum(PlanType, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PlanType.FREE.value,
        server_default=PlanType.FREE.value,
    )
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    organization_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def is_canceled(self) -> bool:
        return self.plan_type == PlanType.CANCELED.value
