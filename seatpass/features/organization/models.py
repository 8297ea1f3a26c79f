"""Organization, subscription and seat models."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from seatpass.database.base import Base, TimestampMixin, UTCDateTime, utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class SubscriptionStatus(StrEnum):
    """Subscription status as reported by the payment processor."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    UNPAID = "unpaid"


# Statuses whose credit pool is visible to seat holders
ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


class SeatStatus(StrEnum):
    ACTIVE = "active"
    REVOKED = "revoked"


class SeatRole(StrEnum):
    """Role of a seat holder inside the organization.

    MEMBER: consumes pooled credits.
    ADMIN: additionally assigns and revokes seats.
    """

    MEMBER = "member"
    ADMIN = "admin"


class Organization(Base, TimestampMixin):
    """Organization mirrored from the identity provider."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_org_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class OrganizationSubscription(Base, TimestampMixin):
    """Organization subscription holding the pooled credit balance."""

    __tablename__ = "organization_subscriptions"
    __table_args__ = (
        CheckConstraint("total_credits >= 0", name="ck_org_subscriptions_total_credits"),
        CheckConstraint("used_credits >= 0", name="ck_org_subscriptions_used_credits"),
        CheckConstraint("seats_used >= 0", name="ck_org_subscriptions_seats_used"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        Enum(SubscriptionStatus, native_enum=False, length=50, values_callable=_enum_values),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        index=True,
    )

    seats_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    seats_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # May exceed total_credits when usage races a renewal
    used_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    current_period_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def is_entitled(self) -> bool:
        return self.status in ENTITLED_STATUSES

    @property
    def remaining_credits(self) -> int:
        return max(0, self.total_credits - self.used_credits)

    @property
    def seats_available(self) -> int:
        return max(0, self.seats_total - self.seats_used)


class OrganizationSeat(Base):
    """Entitlement slot binding one identity to an organization subscription."""

    __tablename__ = "organization_seats"
    __table_args__ = (
        # Only one active seat per (organization, identity)
        Index(
            "uq_organization_seats_active_identity",
            "organization_id",
            "identity",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    subscription_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("organization_subscriptions.id"), nullable=True, index=True
    )

    identity: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        Enum(SeatRole, native_enum=False, length=50, values_callable=_enum_values),
        nullable=False,
        default=SeatRole.MEMBER.value,
    )
    status: Mapped[str] = mapped_column(
        Enum(SeatStatus, native_enum=False, length=50, values_callable=_enum_values),
        nullable=False,
        default=SeatStatus.ACTIVE.value,
        index=True,
    )

    # None means the seat never expires
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revocation_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == SeatStatus.ACTIVE.value

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())
