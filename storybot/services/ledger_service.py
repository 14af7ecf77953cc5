from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.database.models import PurchasedPath, User
from storybot.services.errors import (
    ConcurrentPurchaseConflict,
    InsufficientBalance,
    NotFound,
)

logger = logging.getLogger(__name__)


@dataclass
class Purchase:
    choice_id: str
    price_paid: int
    balance_after: int


class BalanceLedger:
    """Spendable balance and permanent premium-path ownership.

    Balance changes are single conditional UPDATE statements so the
    "never negative" rule holds under concurrent requests without any
    in-process locking.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_balance(self, user_id: int) -> int:
        result = await self.session.execute(select(User.balance).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        return balance or 0

    async def credit(self, user_id: int, amount: int) -> int:
        """Add ``amount`` to the balance (top-ups). Returns the new balance."""
        if amount <= 0:
            raise ValueError("Credit amount must be positive")
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            await self.session.rollback()
            raise NotFound(f"User {user_id} not found")
        await self.session.commit()
        balance = await self.get_balance(user_id)
        logger.info(f"User {user_id} credited {amount}. Balance: {balance}")
        return balance

    async def try_debit(self, user_id: int, amount: int) -> bool:
        """Debit ``amount`` only if the balance covers it.

        Runs inside the caller's transaction and does not commit. Returns
        False, with nothing changed, when the balance is insufficient.
        """
        if amount < 0:
            raise ValueError("Debit amount must not be negative")
        stmt = (
            update(User)
            .where(User.id == user_id, User.balance >= amount)
            .values(balance=User.balance - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def record_purchase(self, user_id: int, story_id: str, choice_id: str, price_paid: int) -> bool:
        """Insert the ownership row inside the caller's transaction.

        On a unique-constraint violation the whole transaction, including
        any debit issued before it, is rolled back and False is returned:
        someone else already recorded this purchase.
        """
        self.session.add(
            PurchasedPath(
                user_id=user_id,
                story_id=story_id,
                choice_id=choice_id,
                price_paid=price_paid,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            logger.info(f"Purchase of choice {choice_id} by user {user_id} already recorded")
            return False
        return True

    async def purchase_path(self, user_id: int, story_id: str, choice_id: str, cost: int) -> Purchase:
        """Debit ``cost`` and record ownership as one transaction.

        Raises ``InsufficientBalance`` or ``ConcurrentPurchaseConflict``; in
        both cases nothing has been committed.
        """
        if not await self.try_debit(user_id, cost):
            available = await self.get_balance(user_id)
            await self.session.rollback()
            logger.warning(
                f"User {user_id} cannot afford choice {choice_id}: needs {cost}, has {available}"
            )
            raise InsufficientBalance(required=cost, available=available)

        if not await self.record_purchase(user_id, story_id, choice_id, cost):
            raise ConcurrentPurchaseConflict(user_id, choice_id)

        await self.session.commit()
        balance = await self.get_balance(user_id)
        logger.info(f"User {user_id} bought choice {choice_id} for {cost}. Balance: {balance}")
        return Purchase(choice_id=choice_id, price_paid=cost, balance_after=balance)

    async def has_purchased(self, user_id: int, choice_id: str) -> bool:
        stmt = select(PurchasedPath.id).where(
            PurchasedPath.user_id == user_id,
            PurchasedPath.choice_id == choice_id,
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def owned_choice_ids(self, user_id: int, choice_ids: Iterable[str]) -> set[str]:
        choice_ids = list(choice_ids)
        if not choice_ids:
            return set()
        stmt = select(PurchasedPath.choice_id).where(
            PurchasedPath.user_id == user_id,
            PurchasedPath.choice_id.in_(choice_ids),
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def count_purchases(self, user_id: int) -> int:
        stmt = select(func.count(PurchasedPath.id)).where(PurchasedPath.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()
