"""
Spendable balance of a user.

The balance column is only ever changed here, and every change appends the
ledger entry that describes it in the same transaction.
"""

import logging
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from parkgo.core.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from parkgo.models.base import utcnow
from parkgo.models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    PaymentMethod,
)
from parkgo.models.user import User

logger = logging.getLogger(__name__)


def new_correlation_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:20].upper()}"


class BalanceLedger:
    """
    Signed balance deltas, each tied to a Transaction record
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def get_balance(self, db: AsyncSession, user_id: UUID) -> int:
        result = await db.execute(select(User.balance).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError("User", user_id)
        return balance

    async def debit(
        self,
        db: AsyncSession,
        user_id: UUID,
        amount: int,
        *,
        tx_type: TransactionType = TransactionType.SALDO_DEBIT,
        booking_id: Optional[UUID] = None,
        description: Optional[str] = None
    ) -> Transaction:
        """
        Subtract ``amount`` if the balance covers it, else raise
        InsufficientBalanceError leaving the balance untouched.
        """
        if amount <= 0:
            raise ValidationError("Debit amount must be positive", field="amount")

        result = await db.execute(
            update(User)
            .where(and_(User.id == user_id, User.balance >= amount))
            .values(balance=User.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = await self.get_balance(db, user_id)
            raise InsufficientBalanceError(required=amount, available=available)

        entry = self._entry(
            user_id=user_id,
            tx_type=tx_type,
            amount=amount,
            booking_id=booking_id,
            description=description or f"Balance debit of {amount}",
            prefix="DEBIT" if tx_type == TransactionType.SALDO_DEBIT else "OVT",
        )
        db.add(entry)
        await db.flush()

        self.logger.info(
            "Balance debited",
            extra={"user_id": str(user_id), "amount": amount, "type": TransactionType(tx_type).value}
        )
        return entry

    async def credit(
        self,
        db: AsyncSession,
        user_id: UUID,
        amount: int,
        *,
        booking_id: Optional[UUID] = None,
        description: Optional[str] = None
    ) -> Transaction:
        """Add ``amount`` to the balance and append the saldo_credit mirror"""
        if amount <= 0:
            raise ValidationError("Credit amount must be positive", field="amount")

        result = await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(balance=User.balance + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("User", user_id)

        entry = self._entry(
            user_id=user_id,
            tx_type=TransactionType.SALDO_CREDIT,
            amount=amount,
            booking_id=booking_id,
            description=description or f"Balance credit of {amount}",
            prefix="CREDIT",
        )
        db.add(entry)
        await db.flush()

        self.logger.info("Balance credited", extra={"user_id": str(user_id), "amount": amount})
        return entry

    def _entry(self, *, user_id, tx_type, amount, booking_id, description, prefix) -> Transaction:
        return Transaction(
            user_id=user_id,
            booking_id=booking_id,
            correlation_id=new_correlation_id(prefix),
            type=tx_type,
            amount=amount,
            payment_method=PaymentMethod.SALDO,
            status=TransactionStatus.SUCCESS,
            description=description,
            completed_at=self.clock(),
        )


balance_ledger = BalanceLedger()
