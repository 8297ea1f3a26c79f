"""Database dependencies."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.client import get_session


async def get_db_session() -> AsyncGenerator[AsyncSession]:
    """Get a database session for a single request.

    Routers commit explicitly once the service call succeeds; any exception
    rolls the transaction back.
    """
    async with get_session() as session:
        yield session
