"""Resolve the credit-bearing plan currently in effect for a user."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.subscription import ServiceSubscription, Subscription
from services.credit_types import StorageUnavailable

logger = logging.getLogger(__name__)


LEGACY_PLAN_TYPE_TO_PLAN_ID: Dict[str, str] = {
    "premium": "gogh_pro",
    "essential": "gogh_essencial",
}

SERVICE_SUBSCRIPTION_STATUSES = ("active", "trialing")


class BasePlanResolver(ABC):
    @abstractmethod
    async def effective_plan(self, user_id: str) -> Optional[str]:
        raise NotImplementedError


class StaticPlanResolver(BasePlanResolver):
    """Fixed user → plan mapping, with an optional default plan."""

    def __init__(self, plans: Optional[Dict[str, Optional[str]]] = None, default: Optional[str] = None) -> None:
        self.plans = dict(plans or {})
        self.default = default

    def set_plan(self, user_id: str, plan_id: Optional[str]) -> None:
        self.plans[user_id] = plan_id

    async def effective_plan(self, user_id: str) -> Optional[str]:
        return self.plans.get(user_id, self.default)


class SubscriptionPlanResolver(BasePlanResolver):
    """Plan lookup over ``subscriptions`` with a ``service_subscriptions`` fallback.

    Order: the newest active, unexpired subscription's ``plan_id``; else its
    legacy ``plan_type`` mapping; else the newest active/trialing service
    subscription whose plan is a known credit-bearing plan.
    """

    def __init__(
        self,
        db: AsyncSession,
        known_plans: Optional[Iterable[str]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.db = db
        self.known_plans = set(known_plans or LEGACY_PLAN_TYPE_TO_PLAN_ID.values())
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def effective_plan(self, user_id: str) -> Optional[str]:
        try:
            plan_id = await self._subscription_plan(user_id)
            if plan_id:
                return plan_id
            return await self._service_subscription_plan(user_id)
        except SQLAlchemyError as exc:
            logger.error("Plan lookup for %s failed: %s", user_id, exc)
            raise StorageUnavailable("Could not resolve subscription plan.") from exc

    async def _subscription_plan(self, user_id: str) -> Optional[str]:
        result = await self.db.execute(
            select(Subscription.plan_id, Subscription.plan_type)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == "active",
                Subscription.current_period_end >= self._now(),
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        if row.plan_id:
            return row.plan_id
        return LEGACY_PLAN_TYPE_TO_PLAN_ID.get((row.plan_type or "").strip().lower())

    async def _service_subscription_plan(self, user_id: str) -> Optional[str]:
        result = await self.db.execute(
            select(ServiceSubscription.plan_id)
            .where(
                ServiceSubscription.user_id == user_id,
                ServiceSubscription.status.in_(SERVICE_SUBSCRIPTION_STATUSES),
            )
            .order_by(ServiceSubscription.created_at.desc())
            .limit(1)
        )
        plan_id = result.scalar_one_or_none()
        if plan_id and plan_id in self.known_plans:
            return plan_id
        return None
