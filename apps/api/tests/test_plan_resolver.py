from datetime import datetime, timedelta, timezone

import pytest

from models.subscription import ServiceSubscription, Subscription
from models.user import User
from services.plan_resolver import StaticPlanResolver, SubscriptionPlanResolver


USER_ID = "plan-user"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


async def _seed(session_maker, *rows):
    async with session_maker() as db:
        db.add(User(id=USER_ID, email="plan@example.com"))
        for row in rows:
            db.add(row)
        await db.commit()


async def _resolve(session_maker, known_plans=None):
    async with session_maker() as db:
        resolver = SubscriptionPlanResolver(db, known_plans=known_plans, now=lambda: NOW)
        return await resolver.effective_plan(USER_ID)


@pytest.mark.asyncio
async def test_active_subscription_plan_wins(session_maker):
    await _seed(
        session_maker,
        Subscription(
            user_id=USER_ID,
            plan_id="gogh_essencial",
            status="active",
            current_period_end=NOW + timedelta(days=10),
            created_at=NOW - timedelta(days=40),
        ),
        Subscription(
            user_id=USER_ID,
            plan_id="gogh_pro",
            status="active",
            current_period_end=NOW + timedelta(days=20),
            created_at=NOW - timedelta(days=5),
        ),
        ServiceSubscription(user_id=USER_ID, plan_id="gogh_essencial", status="active", created_at=NOW),
    )
    assert await _resolve(session_maker) == "gogh_pro"


@pytest.mark.asyncio
async def test_expired_or_cancelled_subscriptions_are_ignored(session_maker):
    await _seed(
        session_maker,
        Subscription(
            user_id=USER_ID,
            plan_id="gogh_pro",
            status="active",
            current_period_end=NOW - timedelta(days=1),
            created_at=NOW - timedelta(days=31),
        ),
        Subscription(
            user_id=USER_ID,
            plan_id="gogh_pro",
            status="canceled",
            current_period_end=NOW + timedelta(days=1),
            created_at=NOW - timedelta(days=2),
        ),
    )
    assert await _resolve(session_maker) is None


@pytest.mark.asyncio
async def test_legacy_plan_type_maps_to_plan_id(session_maker):
    await _seed(
        session_maker,
        Subscription(
            user_id=USER_ID,
            plan_id=None,
            plan_type="premium",
            status="active",
            current_period_end=NOW + timedelta(days=3),
            created_at=NOW - timedelta(days=3),
        ),
    )
    assert await _resolve(session_maker) == "gogh_pro"


@pytest.mark.asyncio
async def test_service_subscription_fallback_requires_known_plan(session_maker):
    await _seed(
        session_maker,
        ServiceSubscription(user_id=USER_ID, plan_id="gogh_essencial", status="trialing", created_at=NOW),
    )
    assert await _resolve(session_maker) == "gogh_essencial"
    assert await _resolve(session_maker, known_plans=["gogh_pro"]) is None


@pytest.mark.asyncio
async def test_service_subscription_with_non_credit_plan_is_ignored(session_maker):
    await _seed(
        session_maker,
        ServiceSubscription(user_id=USER_ID, plan_id="social_media_management", status="active", created_at=NOW),
    )
    assert await _resolve(session_maker) is None


@pytest.mark.asyncio
async def test_no_subscriptions_resolves_to_none(session_maker):
    await _seed(session_maker)
    assert await _resolve(session_maker) is None


@pytest.mark.asyncio
async def test_static_resolver_default_and_override():
    resolver = StaticPlanResolver(default="gogh_essencial")
    assert await resolver.effective_plan("anyone") == "gogh_essencial"
    resolver.set_plan("anyone", None)
    assert await resolver.effective_plan("anyone") is None
