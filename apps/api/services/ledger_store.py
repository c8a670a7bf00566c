"""Persistence adapters for monthly credit balances and purchased lots."""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.monthly_balance import MONTHLY_FEATURE_KEY, MonthlyBalance
from models.purchased_credit_lot import PURCHASED_FEATURE_KEY, PurchasedCreditLot
from services.credit_types import (
    BalanceRow,
    DecrementResult,
    DeductSuccess,
    DuplicatePeriod,
    InsufficientCredits,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)


class BaseLedgerStore(ABC):
    """Storage contract used by ``CreditLedger``.

    ``compare_and_decrement`` must check and apply the decrement in one atomic
    step; a read followed by a separate write is not an acceptable
    implementation.
    """

    @abstractmethod
    async def get_monthly_balance(
        self, user_id: str, period_start: date, period_end: date
    ) -> Optional[BalanceRow]:
        raise NotImplementedError

    @abstractmethod
    async def create_monthly_balance(
        self, user_id: str, period_start: date, period_end: date, initial_amount: int
    ) -> BalanceRow:
        """Insert the period row or raise ``DuplicatePeriod`` if it already exists."""
        raise NotImplementedError

    @abstractmethod
    async def compare_and_decrement(self, balance_id: str, cost: int) -> DecrementResult:
        raise NotImplementedError

    @abstractmethod
    async def top_up(self, balance_id: str, new_amount: int) -> bool:
        """Raise ``usage_count`` to ``new_amount`` only if it is currently lower."""
        raise NotImplementedError

    @abstractmethod
    async def sum_purchased_lots(self, user_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def add_purchased_lot(
        self,
        user_id: str,
        amount: int,
        *,
        provider: Optional[str] = None,
        billing_reference: Optional[str] = None,
    ) -> str:
        raise NotImplementedError


class SqlLedgerStore(BaseLedgerStore):
    """SQLAlchemy-backed store; commits after each mutation."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _rollback_quietly(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as exc:
            logger.warning("Ledger rollback failed: %s", exc)

    async def _fail(self, operation: str, exc: SQLAlchemyError) -> StorageUnavailable:
        await self._rollback_quietly()
        logger.error("Ledger store %s failed: %s", operation, exc)
        return StorageUnavailable(f"Ledger store {operation} failed.")

    async def _current_amount(self, balance_id: str) -> int:
        result = await self.db.execute(
            select(MonthlyBalance.usage_count).where(MonthlyBalance.id == balance_id)
        )
        return int(result.scalar() or 0)

    async def get_monthly_balance(
        self, user_id: str, period_start: date, period_end: date
    ) -> Optional[BalanceRow]:
        try:
            result = await self.db.execute(
                select(
                    MonthlyBalance.id,
                    MonthlyBalance.usage_count,
                    MonthlyBalance.period_start,
                    MonthlyBalance.period_end,
                ).where(
                    MonthlyBalance.user_id == user_id,
                    MonthlyBalance.feature_key == MONTHLY_FEATURE_KEY,
                    MonthlyBalance.period_start == period_start,
                    MonthlyBalance.period_end == period_end,
                )
            )
            row = result.first()
        except SQLAlchemyError as exc:
            raise await self._fail("read", exc) from exc
        if row is None:
            return None
        return BalanceRow(
            id=row.id,
            user_id=user_id,
            usage_count=int(row.usage_count),
            period_start=row.period_start,
            period_end=row.period_end,
        )

    async def create_monthly_balance(
        self, user_id: str, period_start: date, period_end: date, initial_amount: int
    ) -> BalanceRow:
        amount = max(int(initial_amount), 0)
        balance = MonthlyBalance(
            id=str(uuid.uuid4()),
            user_id=user_id,
            feature_key=MONTHLY_FEATURE_KEY,
            usage_count=amount,
            period_start=period_start,
            period_end=period_end,
        )
        try:
            self.db.add(balance)
            await self.db.commit()
        except IntegrityError as exc:
            await self._rollback_quietly()
            raise DuplicatePeriod(
                f"Monthly balance for {user_id} {period_start}..{period_end} already exists."
            ) from exc
        except SQLAlchemyError as exc:
            raise await self._fail("create", exc) from exc
        return BalanceRow(
            id=balance.id,
            user_id=user_id,
            usage_count=amount,
            period_start=period_start,
            period_end=period_end,
        )

    async def compare_and_decrement(self, balance_id: str, cost: int) -> DecrementResult:
        debit = max(int(cost), 0)
        stmt = (
            update(MonthlyBalance)
            .where(MonthlyBalance.id == balance_id, MonthlyBalance.usage_count >= debit)
            .values(usage_count=MonthlyBalance.usage_count - debit, updated_at=func.now())
            .returning(MonthlyBalance.usage_count)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            new_amount = result.scalar_one_or_none()
            await self.db.commit()
            if new_amount is None:
                return InsufficientCredits(balance=await self._current_amount(balance_id), required=debit)
        except SQLAlchemyError as exc:
            raise await self._fail("decrement", exc) from exc
        return DeductSuccess(balance=int(new_amount), charged=debit)

    async def top_up(self, balance_id: str, new_amount: int) -> bool:
        target = int(new_amount)
        stmt = (
            update(MonthlyBalance)
            .where(MonthlyBalance.id == balance_id, MonthlyBalance.usage_count < target)
            .values(usage_count=target, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("top-up", exc) from exc
        return bool(result.rowcount)

    async def sum_purchased_lots(self, user_id: str) -> int:
        try:
            result = await self.db.execute(
                select(func.coalesce(func.sum(PurchasedCreditLot.usage_count), 0)).where(
                    PurchasedCreditLot.user_id == user_id,
                    PurchasedCreditLot.feature_key == PURCHASED_FEATURE_KEY,
                )
            )
            return int(result.scalar() or 0)
        except SQLAlchemyError as exc:
            raise await self._fail("purchased-sum", exc) from exc

    async def add_purchased_lot(
        self,
        user_id: str,
        amount: int,
        *,
        provider: Optional[str] = None,
        billing_reference: Optional[str] = None,
    ) -> str:
        credits = int(amount)
        if credits <= 0:
            raise ValueError("Purchased lot amount must be greater than 0.")
        lot = PurchasedCreditLot(
            id=str(uuid.uuid4()),
            user_id=user_id,
            feature_key=PURCHASED_FEATURE_KEY,
            usage_count=credits,
            billing_provider=provider,
            billing_reference=billing_reference,
        )
        try:
            self.db.add(lot)
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("purchase", exc) from exc
        return lot.id


class InMemoryLedgerStore(BaseLedgerStore):
    """Process-local store for development and tests.

    Each balance row has its own lock; the registry lock only guards lock and
    row creation.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, Dict[str, object]] = {}
        self._period_index: Dict[Tuple[str, date, date], str] = {}
        self._lots: Dict[str, List[Dict[str, object]]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    def _to_row(self, balance_id: str) -> BalanceRow:
        row = self._rows[balance_id]
        return BalanceRow(
            id=balance_id,
            user_id=str(row["user_id"]),
            usage_count=int(row["usage_count"]),
            period_start=row["period_start"],
            period_end=row["period_end"],
        )

    def _lock_for(self, balance_id: str) -> asyncio.Lock:
        lock = self._locks.get(balance_id)
        if lock is None:
            raise StorageUnavailable(f"Unknown monthly balance {balance_id}.")
        return lock

    def row_count(self, user_id: Optional[str] = None) -> int:
        return sum(1 for row in self._rows.values() if user_id is None or row["user_id"] == user_id)

    async def get_monthly_balance(
        self, user_id: str, period_start: date, period_end: date
    ) -> Optional[BalanceRow]:
        balance_id = self._period_index.get((user_id, period_start, period_end))
        if balance_id is None:
            return None
        async with self._lock_for(balance_id):
            return self._to_row(balance_id)

    async def create_monthly_balance(
        self, user_id: str, period_start: date, period_end: date, initial_amount: int
    ) -> BalanceRow:
        key = (user_id, period_start, period_end)
        async with self._registry_lock:
            if key in self._period_index:
                raise DuplicatePeriod(
                    f"Monthly balance for {user_id} {period_start}..{period_end} already exists."
                )
            balance_id = str(uuid.uuid4())
            self._rows[balance_id] = {
                "user_id": user_id,
                "usage_count": max(int(initial_amount), 0),
                "period_start": period_start,
                "period_end": period_end,
            }
            self._locks[balance_id] = asyncio.Lock()
            self._period_index[key] = balance_id
            return self._to_row(balance_id)

    async def compare_and_decrement(self, balance_id: str, cost: int) -> DecrementResult:
        debit = max(int(cost), 0)
        async with self._lock_for(balance_id):
            row = self._rows[balance_id]
            current = int(row["usage_count"])
            if current < debit:
                return InsufficientCredits(balance=current, required=debit)
            row["usage_count"] = current - debit
            return DeductSuccess(balance=current - debit, charged=debit)

    async def top_up(self, balance_id: str, new_amount: int) -> bool:
        async with self._lock_for(balance_id):
            row = self._rows[balance_id]
            if int(new_amount) <= int(row["usage_count"]):
                return False
            row["usage_count"] = int(new_amount)
            return True

    async def sum_purchased_lots(self, user_id: str) -> int:
        return sum(int(lot["amount"]) for lot in self._lots.get(user_id, []))

    async def add_purchased_lot(
        self,
        user_id: str,
        amount: int,
        *,
        provider: Optional[str] = None,
        billing_reference: Optional[str] = None,
    ) -> str:
        credits = int(amount)
        if credits <= 0:
            raise ValueError("Purchased lot amount must be greater than 0.")
        lot_id = str(uuid.uuid4())
        async with self._registry_lock:
            self._lots.setdefault(user_id, []).append(
                {
                    "id": lot_id,
                    "amount": credits,
                    "provider": provider,
                    "billing_reference": billing_reference,
                }
            )
        return lot_id
