"""
Wallet ledger.

Balance invariant: ``riders.wallet_balance`` never goes below zero.

* ``check_and_reserve`` is an affordability check only; it does not hold
  funds.  A rider can spend the balance elsewhere between booking and
  completion, in which case the completion-time debit fails (see
  ``RideLifecycle.complete``).
* ``debit`` / ``credit`` are relative updates issued as one conditional
  ``UPDATE``; concurrent debits for the same rider serialise on the row and
  none is lost.  They run inside the caller's session so a ride transition
  and its wallet movement commit together.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridehail.domain.entities import FundsCheck
from ridehail.domain.enums import LedgerReason
from ridehail.domain.errors import InsufficientFunds, InvalidInput, NotFound
from ridehail.domain.pricing import round_money, to_decimal
from ridehail.infrastructure.repositories import LedgerRepository, RiderRepository
from .unit_of_work import read_only, transaction

logger = logging.getLogger(__name__)


def _positive_amount(amount) -> Decimal:
    value = round_money(to_decimal(amount))
    if value <= 0:
        raise InvalidInput("Amount must be positive", {"amount": str(amount)})
    return value


class Ledger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.sessions = session_factory

    async def balance(self, rider_id: int) -> Decimal:
        async with read_only(self.sessions) as session:
            balance = await RiderRepository(session).get_balance(rider_id)
        if balance is None:
            raise NotFound(f"Rider {rider_id} not found")
        return balance

    async def check_and_reserve(
        self,
        rider_id: int,
        amount: Decimal,
        balance: Optional[Decimal] = None,
    ) -> FundsCheck:
        """Verify ``balance >= amount`` without mutating anything.

        *balance* may carry a snapshot the caller already read; otherwise the
        current balance is fetched.
        """
        amount = to_decimal(amount)
        if balance is None:
            balance = await self.balance(rider_id)
        return FundsCheck(ok=balance >= amount, balance=balance, amount=amount)

    async def debit(
        self,
        session: AsyncSession,
        rider_id: int,
        amount,
        *,
        reason: LedgerReason = LedgerReason.RIDE_FARE,
        ride_id: Optional[int] = None,
    ) -> Decimal:
        amount = _positive_amount(amount)
        riders = RiderRepository(session)
        if not await riders.debit_if_covered(rider_id, amount):
            balance = await riders.get_balance(rider_id)
            if balance is None:
                raise NotFound(f"Rider {rider_id} not found")
            raise InsufficientFunds(balance, amount)
        balance = await riders.get_balance(rider_id)
        await LedgerRepository(session).append(
            rider_id=rider_id,
            ride_id=ride_id,
            amount=-amount,
            balance_after=balance,
            reason=reason,
        )
        logger.info("Debited %s from rider %s (ride=%s)", amount, rider_id, ride_id)
        return balance

    async def credit(
        self,
        session: AsyncSession,
        rider_id: int,
        amount,
        *,
        reason: LedgerReason = LedgerReason.TOP_UP,
        ride_id: Optional[int] = None,
    ) -> Decimal:
        amount = _positive_amount(amount)
        riders = RiderRepository(session)
        if not await riders.credit(rider_id, amount):
            raise NotFound(f"Rider {rider_id} not found")
        balance = await riders.get_balance(rider_id)
        await LedgerRepository(session).append(
            rider_id=rider_id,
            ride_id=ride_id,
            amount=amount,
            balance_after=balance,
            reason=reason,
        )
        logger.info("Credited %s to rider %s", amount, rider_id)
        return balance

    async def top_up(self, rider_id: int, amount) -> Decimal:
        async with transaction(self.sessions) as session:
            return await self.credit(session, rider_id, amount)
