"""AI credit pricing and allowance configuration.

The configuration lives in a single ``site_settings`` row (key
``settings.CREDITS_CONFIG_KEY``) shaped as::

    {
        "monthlyCreditsByPlan": {"gogh_essencial": 50, "gogh_pro": 200},
        "costByAction": {"foto": 5, "video": 10, "roteiro": 15, "prompts": 5, "vangogh": 10}
    }

Absent or partially populated records are not errors: every missing or
malformed entry falls back to the defaults below.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.site_setting import SiteSetting
from services.credit_types import MAX_CREDIT_AMOUNT, ActionId, StorageUnavailable, parse_action_id

logger = logging.getLogger(__name__)


DEFAULT_COST_BY_ACTION: Dict[ActionId, int] = {
    ActionId.PHOTO: 5,
    ActionId.VIDEO: 10,
    ActionId.SCRIPT: 15,
    ActionId.PROMPTS: 5,
    ActionId.VANGOGH: 10,
}

DEFAULT_MONTHLY_CREDITS_BY_PLAN: Dict[str, int] = {
    "gogh_essencial": 50,
    "gogh_pro": 200,
}


def _non_negative_int(value: Any) -> Optional[int]:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    number = int(value)
    return number if 0 <= number <= MAX_CREDIT_AMOUNT else None


@dataclass(frozen=True)
class CreditsConfig:
    monthly_credits_by_plan: Dict[str, int] = field(default_factory=dict)
    cost_by_action: Dict[ActionId, int] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Any) -> "CreditsConfig":
        """Build a config from the stored JSON, dropping invalid entries."""
        if not isinstance(value, dict):
            return cls()

        monthly: Dict[str, int] = {}
        raw_monthly = value.get("monthlyCreditsByPlan")
        if isinstance(raw_monthly, dict):
            for plan_id, amount in raw_monthly.items():
                parsed = _non_negative_int(amount)
                if plan_id and parsed is not None:
                    monthly[str(plan_id)] = parsed

        costs: Dict[ActionId, int] = {}
        raw_costs = value.get("costByAction")
        if isinstance(raw_costs, dict):
            for action, amount in raw_costs.items():
                action_id = parse_action_id(action)
                parsed = _non_negative_int(amount)
                if action_id is not None and parsed is not None:
                    costs[action_id] = parsed

        return cls(monthly_credits_by_plan=monthly, cost_by_action=costs)

    def to_value(self) -> Dict[str, Any]:
        return {
            "monthlyCreditsByPlan": dict(self.monthly_credits_by_plan),
            "costByAction": {action.value: cost for action, cost in self.cost_by_action.items()},
        }


def get_credit_cost(action: Union[ActionId, str], config: Optional[CreditsConfig] = None) -> int:
    """Return the configured cost for an action, or its hard-coded default."""
    action_id = parse_action_id(action)
    if action_id is None:
        raise ValueError(f"Unknown credit action: {action!r}")
    if config is not None and action_id in config.cost_by_action:
        return config.cost_by_action[action_id]
    return DEFAULT_COST_BY_ACTION[action_id]


def get_monthly_credits_for_plan(plan_id: Optional[str], config: Optional[CreditsConfig] = None) -> int:
    """Return the monthly allowance for a plan; unknown or missing plans get 0."""
    if not plan_id:
        return 0
    if config is not None and plan_id in config.monthly_credits_by_plan:
        return config.monthly_credits_by_plan[plan_id]
    return DEFAULT_MONTHLY_CREDITS_BY_PLAN.get(plan_id, 0)


def cost_table(config: Optional[CreditsConfig] = None) -> Dict[str, int]:
    return {action.value: get_credit_cost(action, config) for action in ActionId}


def known_credit_plans(config: Optional[CreditsConfig] = None) -> List[str]:
    plans = set(DEFAULT_MONTHLY_CREDITS_BY_PLAN)
    if config is not None:
        plans.update(config.monthly_credits_by_plan)
    return sorted(plans)


@dataclass(frozen=True)
class CreditPlan:
    """Purchasable pack of non-expiring credits."""

    id: str
    name: str
    credits: int
    stripe_checkout_url: str
    stripe_price_id: Optional[str] = None
    order: Optional[int] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["CreditPlan"]:
        if not isinstance(value, dict):
            return None
        plan_id = str(value.get("id") or "").strip()
        credits = _non_negative_int(value.get("credits"))
        if not plan_id or not credits:
            return None
        order = value.get("order")
        return cls(
            id=plan_id,
            name=str(value.get("name") or plan_id),
            credits=credits,
            stripe_checkout_url=str(value.get("stripe_checkout_url") or ""),
            stripe_price_id=str(value["stripe_price_id"]) if value.get("stripe_price_id") else None,
            order=order if isinstance(order, int) and not isinstance(order, bool) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "credits": self.credits,
            "stripe_checkout_url": self.stripe_checkout_url,
            "stripe_price_id": self.stripe_price_id,
            "order": self.order,
        }


class BaseConfigResolver(ABC):
    @abstractmethod
    async def load(self) -> CreditsConfig:
        raise NotImplementedError


class StaticConfigResolver(BaseConfigResolver):
    """Resolver over an in-process config; defaults when ``config`` is None."""

    def __init__(self, config: Optional[CreditsConfig] = None) -> None:
        self.config = config or CreditsConfig()

    async def load(self) -> CreditsConfig:
        return self.config


class SiteSettingsConfigResolver(BaseConfigResolver):
    """Reads the credits config row once per instance (one instance per request)."""

    def __init__(self, db: AsyncSession, key: Optional[str] = None) -> None:
        self.db = db
        self.key = key or settings.CREDITS_CONFIG_KEY
        self._cached: Optional[CreditsConfig] = None
        self.raw_value: Optional[Dict[str, Any]] = None

    async def _read_value(self, key: str) -> Any:
        try:
            result = await self.db.execute(select(SiteSetting.value).where(SiteSetting.key == key))
            return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Reading site setting %s failed: %s", key, exc)
            raise StorageUnavailable(f"Could not read site setting {key}.") from exc

    async def load(self) -> CreditsConfig:
        if self._cached is None:
            value = await self._read_value(self.key)
            self.raw_value = value if isinstance(value, dict) else None
            self._cached = CreditsConfig.from_value(value)
        return self._cached

    async def save(self, config: CreditsConfig) -> CreditsConfig:
        """Overwrite the singleton config record."""
        try:
            existing = await self.db.get(SiteSetting, self.key)
            if existing is None:
                self.db.add(SiteSetting(key=self.key, value=config.to_value()))
            else:
                existing.value = config.to_value()
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Saving credits config failed: %s", exc)
            raise StorageUnavailable("Could not save credits config.") from exc
        self._cached = config
        self.raw_value = config.to_value()
        return config

    async def load_credit_plans(self) -> List[CreditPlan]:
        value = await self._read_value(settings.CREDIT_PLANS_KEY)
        if not isinstance(value, list):
            return []
        plans = [plan for plan in (CreditPlan.from_value(item) for item in value) if plan is not None]
        plans.sort(key=lambda plan: (plan.order if plan.order is not None else 1_000_000, plan.name))
        return plans
