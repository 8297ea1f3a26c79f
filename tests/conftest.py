"""Test configuration and fixtures.

Every test gets its own in-memory SQLite database:
1. The schema is created from the models before the test runs
2. Routers commit for real; the database is discarded afterwards
3. The identity provider is replaced by a dependency override
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Settings are read on import, so the test environment must be loaded first
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=True)
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ["RATE_LIMIT_ENABLED"] = "false"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from seatpass.database.base import Base  # noqa: E402
from seatpass.database.dependencies import get_db_session  # noqa: E402
from seatpass.features.identity.dependencies import get_identity_assertion  # noqa: E402
from seatpass.features.identity.schemas import IdentityAssertion  # noqa: E402
from seatpass.features.organization.models import (  # noqa: E402
    Organization,
    OrganizationSeat,
    OrganizationSubscription,
    SeatRole,
    SeatStatus,
    SubscriptionStatus,
)
from seatpass.features.user.models import PlanType, User  # noqa: E402
from seatpass.main import app  # noqa: E402

# Database Setup - Function Scope (fresh database per test)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """In-memory SQLite engine shared by every connection of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    async_session = AsyncSession(bind=db_engine, expire_on_commit=False)
    try:
        yield async_session
    finally:
        await async_session.close()


# Mock Database Initialization


@pytest.fixture(autouse=True)
def mock_db_initialization(monkeypatch):
    """Mock init_db and close_db so lifespan doesn't need PostgreSQL."""
    from seatpass import main

    async def mock_init_db():
        pass

    async def mock_close_db():
        pass

    monkeypatch.setattr(main, "init_db", mock_init_db)
    monkeypatch.setattr(main, "close_db", mock_close_db)


# FastAPI Client & Dependency Overrides


@pytest_asyncio.fixture(autouse=True)
async def override_get_db_session(session: AsyncSession):
    """Route every request through the test's session."""

    async def _get_test_session():
        yield session

    app.dependency_overrides[get_db_session] = _get_test_session
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    """Unauthenticated async HTTP test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def signed_in():
    """Factory that makes the identity provider vouch for a subject.

    Usage:
        signed_in("user_123")
        signed_in("admin_1", org_id="org_1", org_role="org:admin")
    """

    def _sign_in(subject_id: str, email: str | None = None, org_id: str | None = None, org_role: str | None = None):
        assertion = IdentityAssertion(
            subject_id=subject_id,
            session_id="sess_test",
            expiry=datetime.now(UTC) + timedelta(minutes=5),
            email=email,
            org_id=org_id,
            org_role=org_role,
        )

        async def override_get_identity_assertion():
            return assertion

        app.dependency_overrides[get_identity_assertion] = override_get_identity_assertion
        return assertion

    return _sign_in


# Test Data Factories


@pytest_asyncio.fixture
async def make_user(session: AsyncSession):
    """Factory fixture to create user records.

    Usage:
        user = await make_user()                    # identity user_1, user_2, ...
        user = await make_user(identity="user_123", credits=50)
    """
    counter = 0

    async def _factory(identity=None, email=None, plan_type=PlanType.FREE, credits=0, **kwargs) -> User:
        nonlocal counter
        counter += 1

        user = User(
            identity=identity or f"user_{counter}",
            email=email or f"testuser{counter}@example.com",
            plan_type=plan_type.value,
            credits=credits,
            **kwargs,
        )
        session.add(user)
        await session.commit()
        return user

    yield _factory


@pytest_asyncio.fixture
async def make_org(session: AsyncSession):
    """Factory fixture to create an organization with one subscription.

    Returns:
        tuple: (organization, subscription)

    """
    counter = 0

    async def _factory(
        external_org_id=None,
        status=SubscriptionStatus.ACTIVE,
        seats_total=5,
        seats_used=0,
        total_credits=1000,
        used_credits=0,
    ) -> tuple[Organization, OrganizationSubscription]:
        nonlocal counter
        counter += 1

        organization = Organization(external_org_id=external_org_id or f"org_{counter}", name=f"Org {counter}")
        session.add(organization)
        await session.flush()

        subscription = OrganizationSubscription(
            organization_id=organization.id,
            stripe_subscription_id=f"sub_{counter}",
            status=status.value,
            seats_total=seats_total,
            seats_used=seats_used,
            total_credits=total_credits,
            used_credits=used_credits,
        )
        session.add(subscription)
        await session.commit()
        return organization, subscription

    yield _factory


@pytest_asyncio.fixture
async def make_seat(session: AsyncSession):
    """Factory fixture to create a seat directly, bypassing capacity checks."""

    async def _factory(
        organization: Organization,
        subscription: OrganizationSubscription | None,
        identity: str,
        role=SeatRole.MEMBER,
        status=SeatStatus.ACTIVE,
        expires_at=None,
    ) -> OrganizationSeat:
        seat = OrganizationSeat(
            organization_id=organization.id,
            subscription_id=subscription.id if subscription else None,
            identity=identity,
            role=role.value,
            status=status.value,
            expires_at=expires_at,
        )
        session.add(seat)
        await session.commit()
        return seat

    yield _factory
