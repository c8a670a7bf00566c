"""Monthly AI credit ledger: balance, reconciliation and atomic deduction."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from services.credit_config import (
    BaseConfigResolver,
    SiteSettingsConfigResolver,
    cost_table,
    get_credit_cost,
    get_monthly_credits_for_plan,
    known_credit_plans,
)
from services.credit_period import month_bounds, period_key
from services.credit_types import (
    BalanceRow,
    BalanceView,
    DeductResult,
    DuplicatePeriod,
    MAX_CREDIT_AMOUNT,
    InsufficientCredits,
    StorageUnavailable,
    UnknownAction,
    parse_action_id,
)
from services.ledger_store import BaseLedgerStore, SqlLedgerStore
from services.plan_resolver import BasePlanResolver, SubscriptionPlanResolver

logger = logging.getLogger(__name__)


class CreditLedger:
    """Per-user monthly credit accounting.

    Each calendar month gets one balance row, opened lazily with the plan's
    allowance. Every read raises the stored balance to the current allowance
    when it is lower, and never lowers it. Deductions draw only from the monthly
    balance; purchased lots are added to the reported total but never
    consumed here.
    """

    def __init__(
        self,
        store: BaseLedgerStore,
        config_resolver: BaseConfigResolver,
        plan_resolver: BasePlanResolver,
        *,
        clock: Optional[Callable[[], Optional[datetime]]] = None,
    ) -> None:
        self.store = store
        self.config_resolver = config_resolver
        self.plan_resolver = plan_resolver
        self._clock = clock or (lambda: None)

    def current_period(self) -> Tuple[date, date]:
        return month_bounds(self._clock())

    async def _current_allowance(self, user_id: str) -> int:
        config = await self.config_resolver.load()
        plan_id = await self.plan_resolver.effective_plan(user_id)
        return get_monthly_credits_for_plan(plan_id, config)

    async def _ensure_monthly_balance(self, user_id: str, period_start: date, period_end: date) -> BalanceRow:
        row = await self.store.get_monthly_balance(user_id, period_start, period_end)
        if row is not None:
            return row

        allowance = await self._current_allowance(user_id)
        try:
            row = await self.store.create_monthly_balance(user_id, period_start, period_end, allowance)
            logger.info(
                "Opened credit period %s for %s with %s credits",
                period_key(period_start),
                user_id,
                allowance,
            )
            return row
        except DuplicatePeriod:
            logger.debug("Credit period %s for %s created concurrently; re-reading", period_key(period_start), user_id)

        row = await self.store.get_monthly_balance(user_id, period_start, period_end)
        if row is None:
            raise StorageUnavailable("Monthly balance row missing after concurrent creation.")
        return row

    async def get_balance(self, user_id: str) -> BalanceView:
        period_start, period_end = self.current_period()
        row = await self._ensure_monthly_balance(user_id, period_start, period_end)

        monthly = row.usage_count
        allowance = await self._current_allowance(user_id)
        if allowance > monthly:
            if await self.store.top_up(row.id, allowance):
                logger.info("Reconciled credits for %s: %s -> %s", user_id, monthly, allowance)
            refreshed = await self.store.get_monthly_balance(user_id, period_start, period_end)
            monthly = refreshed.usage_count if refreshed is not None else allowance

        purchased = await self.store.sum_purchased_lots(user_id)
        config = await self.config_resolver.load()
        raw_config = getattr(self.config_resolver, "raw_value", None)
        return BalanceView(
            total=monthly + purchased,
            monthly=monthly,
            purchased=purchased,
            period_start=period_start,
            period_end=period_end,
            cost_by_action=cost_table(config),
            config=raw_config,
        )

    async def get_costs(self) -> Dict[str, int]:
        return cost_table(await self.config_resolver.load())

    async def deduct(self, user_id: str, action: Any, amount: Optional[Any] = None) -> DeductResult:
        action_id = parse_action_id(action)
        if action_id is None:
            return UnknownAction(action=action)

        override = 0
        if isinstance(amount, (int, float)) and not isinstance(amount, bool) and amount > 0:
            # inf cannot be floored; any value past the column range is unaffordable
            override = MAX_CREDIT_AMOUNT + 1 if isinstance(amount, float) and math.isinf(amount) else int(amount)
        cost = override if override > 0 else get_credit_cost(action_id, await self.config_resolver.load())

        period_start, period_end = self.current_period()
        row = await self._ensure_monthly_balance(user_id, period_start, period_end)
        if cost > MAX_CREDIT_AMOUNT:
            result: DeductResult = InsufficientCredits(balance=row.usage_count, required=cost)
        else:
            result = await self.store.compare_and_decrement(row.id, cost)
        if isinstance(result, InsufficientCredits):
            logger.info(
                "Insufficient credits for %s on %s: balance=%s required=%s",
                user_id,
                action_id.value,
                result.balance,
                result.required,
            )
        return result


async def build_credit_ledger(db: AsyncSession) -> CreditLedger:
    """Wire the SQL-backed ledger for one request."""
    config_resolver = SiteSettingsConfigResolver(db)
    plan_resolver = SubscriptionPlanResolver(db, known_plans=known_credit_plans(await config_resolver.load()))
    return CreditLedger(SqlLedgerStore(db), config_resolver, plan_resolver)


async def record_credit_purchase(
    ledger: CreditLedger,
    user_id: str,
    *,
    credits: int,
    provider: str,
    billing_reference: Optional[str] = None,
) -> BalanceView:
    """Append a purchased lot and return the refreshed balance."""
    lot_id = await ledger.store.add_purchased_lot(
        user_id,
        credits,
        provider=provider,
        billing_reference=billing_reference,
    )
    logger.info("Recorded purchased credit lot %s (%s credits) for %s via %s", lot_id, credits, user_id, provider)
    return await ledger.get_balance(user_id)
