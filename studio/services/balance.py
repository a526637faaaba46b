"""Balance ledger for token operations."""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studio.db.models import Profile

logger = logging.getLogger(__name__)


class BalanceLedger:
    """Debits and credits a user's token balance.

    Both mutations are single conditional UPDATE statements, so two
    concurrent debits can never take the balance below zero: the second
    one simply matches no row.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, user_id: str) -> Optional[int]:
        """Return the user's current balance, or None if no profile exists."""
        result = await self.session.execute(
            select(Profile.token_balance).where(Profile.id == user_id)
        )
        return result.scalar_one_or_none()

    async def debit(self, user_id: str, amount: int) -> bool:
        """
        Take ``amount`` tokens from the user's balance.

        Args:
            user_id: Profile ID
            amount: Number of tokens to take, must be >= 0

        Returns:
            True if the balance was reduced, False if the balance is too low,
            the profile does not exist or the write failed
        """
        if amount < 0:
            raise ValueError(f"Debit amount must be non-negative, got {amount}")

        statement = (
            update(Profile)
            .where(Profile.id == user_id)
            .where(Profile.token_balance >= amount)
            .values(token_balance=Profile.token_balance - amount)
        )
        return await self._apply(statement, user_id, -amount)

    async def credit(self, user_id: str, amount: int) -> bool:
        """
        Give ``amount`` tokens back to the user.

        Returns:
            True if the balance was increased, False otherwise
        """
        if amount < 0:
            raise ValueError(f"Credit amount must be non-negative, got {amount}")

        statement = (
            update(Profile)
            .where(Profile.id == user_id)
            .values(token_balance=Profile.token_balance + amount)
        )
        return await self._apply(statement, user_id, amount)

    async def _apply(self, statement, user_id: str, delta: int) -> bool:
        try:
            result = await self.session.execute(
                statement.execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                logger.info(f"Balance change {delta:+d} rejected for user {user_id}")
                return False
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Balance change {delta:+d} failed for user {user_id}: {e}")
            return False

        logger.info(f"Balance change {delta:+d} applied for user {user_id}")
        return True
