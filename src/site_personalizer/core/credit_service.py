"""Credit balance checks and the debit ledger.

Each user has one ``user_credits`` row holding the spendable balance.  Every
change to it is recorded as a ``credit_transactions`` row carrying the
balance before and after, so the ledger can be replayed to audit a balance.

Exports use two operations:

  1. ``check_available()`` before the job is created: the user must hold at
     least one credit per row in the requested window.
  2. ``debit()`` once the job has been written as completed, for the number
     of rows in the finished export.

A debit never takes the balance below zero.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from site_personalizer.core.models.credits import CreditTransaction, UserCredits

logger = logging.getLogger(__name__)


class CreditService:
    """Reads and moves a user's credit balance.

    All write methods commit immediately so that concurrent workers operating
    in separate sessions see up-to-date balances.  The balance row is locked
    with ``SELECT ... FOR UPDATE`` for the duration of a write.

    Args:
        session: An open :class:`sqlalchemy.ext.asyncio.AsyncSession`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Balance queries
    # ------------------------------------------------------------------

    async def get_balance(self, user_id: str) -> int:
        """Return the user's spendable balance (0 when the user has no row)."""
        result = await self.session.execute(
            select(UserCredits.credits).where(UserCredits.user_id == user_id)
        )
        balance = result.scalar_one_or_none()
        return int(balance or 0)

    async def check_available(self, user_id: str, amount: int) -> bool:
        """Return ``True`` if the user holds at least *amount* credits.

        A failed lookup is logged and reported as ``False``.
        """
        try:
            balance = await self.get_balance(user_id)
        except Exception:
            logger.exception("Error checking credits", extra={"user_id": user_id})
            return False
        return balance >= amount

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def debit(self, user_id: str, amount: int, reason: str) -> bool:
        """Remove *amount* credits from the user's balance.

        Returns:
            ``True`` if the debit was recorded; ``False`` if the balance was
            insufficient or the write failed.
        """
        if amount <= 0:
            logger.debug(
                "Skipping empty credit transaction",
                extra={"user_id": user_id, "type": "debit", "amount": amount},
            )
            return amount == 0

        try:
            await self.session.execute(
                pg_insert(UserCredits)
                .values(user_id=user_id, credits=0)
                .on_conflict_do_nothing(index_elements=["user_id"])
            )
            result = await self.session.execute(
                select(UserCredits).where(UserCredits.user_id == user_id).with_for_update()
            )
            account = result.scalar_one()
            previous = int(account.credits or 0)
            new_balance = previous - amount

            if new_balance < 0:
                await self.session.rollback()
                logger.warning(
                    "Credit transaction failed: Insufficient credits",
                    extra={"user_id": user_id, "required": amount, "available": previous},
                )
                return False

            account.credits = new_balance
            self.session.add(
                CreditTransaction(
                    user_id=user_id,
                    type="debit",
                    amount=amount,
                    reason=reason,
                    previous_balance=previous,
                    new_balance=new_balance,
                )
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            logger.exception(
                "Credit transaction failed",
                extra={"user_id": user_id, "type": "debit", "amount": amount},
            )
            return False

        logger.info(
            "Credit transaction recorded",
            extra={
                "user_id": user_id,
                "type": "debit",
                "amount": amount,
                "previous_balance": previous,
                "new_balance": new_balance,
                "reason": reason,
            },
        )
        return True


# ---------------------------------------------------------------------------
# Session-per-call ledger for background work
# ---------------------------------------------------------------------------


class CreditLedger(Protocol):
    """The credit operations the export pipeline depends on."""

    async def get_balance(self, user_id: str) -> int: ...

    async def check_available(self, user_id: str, amount: int) -> bool: ...

    async def debit(self, user_id: str, amount: int, reason: str) -> bool: ...


class SessionScopedCreditLedger:
    """Runs each :class:`CreditService` call in its own short-lived session.

    Used outside request handlers, where no session is injected.

    Args:
        session_factory: Factory producing :class:`AsyncSession` objects.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_balance(self, user_id: str) -> int:
        async with self._session_factory() as session:
            return await CreditService(session).get_balance(user_id)

    async def check_available(self, user_id: str, amount: int) -> bool:
        async with self._session_factory() as session:
            return await CreditService(session).check_available(user_id, amount)

    async def debit(self, user_id: str, amount: int, reason: str) -> bool:
        async with self._session_factory() as session:
            return await CreditService(session).debit(user_id, amount, reason)
