"""User service layer."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.store import CredentialStore

from .exceptions import InsufficientCredits, InvalidCreditAmount, UserNotFound
from .models import User

logger = logging.getLogger(__name__)


class UserService:
    """Service for user record operations."""

    @staticmethod
    async def get_user(session: AsyncSession, identity: str) -> User:
        """Get the user record for an identity.

        Raises:
            UserNotFound: If the identity has never authenticated

        """
        user = await CredentialStore(session).get_user_by_identity(identity)
        if user is None:
            raise UserNotFound()
        return user

    @staticmethod
    async def provision_user(
        session: AsyncSession,
        identity: str,
        email: str | None = None,
        username: str | None = None,
        verified: bool = False,
    ) -> User:
        """Create or update the user record for an identity.

        Profile data from a verified source (the identity provider) replaces
        what is stored; unverified hints only fill empty fields.
        """
        user = await CredentialStore(session).upsert_user(identity, email=email, username=username, overwrite=verified)
        logger.info(f"User provisioned: {identity}")
        return user

    @staticmethod
    async def grant_credits(session: AsyncSession, identity: str, amount: int) -> int:
        """Add credits to a user's balance and return the new balance."""
        if amount <= 0:
            raise InvalidCreditAmount()
        user = await UserService.get_user(session, identity)
        balance = await CredentialStore(session).adjust_user_credits(user.id, amount)
        if balance is None:
            raise UserNotFound()
        logger.info(f"Granted {amount} credits to {identity}")
        return balance

    @staticmethod
    async def deduct_credits(session: AsyncSession, identity: str, amount: int) -> int:
        """Remove credits from a user's balance.

        The check and the update are one statement, so concurrent deductions
        can never overdraw the balance.

        Raises:
            InsufficientCredits: If the balance is lower than ``amount``

        """
        if amount <= 0:
            raise InvalidCreditAmount()
        user = await UserService.get_user(session, identity)
        balance = await CredentialStore(session).adjust_user_credits(user.id, -amount)
        if balance is None:
            logger.warning(f"Credit deduction of {amount} refused for {identity}")
            raise InsufficientCredits()
        logger.info(f"Deducted {amount} credits from {identity}")
        return balance
