import pytest

from config import settings
from models.site_setting import SiteSetting
from services.credit_config import (
    DEFAULT_COST_BY_ACTION,
    CreditPlan,
    CreditsConfig,
    SiteSettingsConfigResolver,
    StaticConfigResolver,
    cost_table,
    get_credit_cost,
    get_monthly_credits_for_plan,
    known_credit_plans,
)
from services.credit_types import ActionId, parse_action_id


def test_get_credit_cost_falls_back_to_defaults_without_config():
    assert get_credit_cost("foto", None) == 5
    assert get_credit_cost("video", None) == 10
    assert get_credit_cost("roteiro", None) == 15
    assert get_credit_cost("prompts", None) == 5
    assert get_credit_cost(ActionId.VANGOGH, None) == DEFAULT_COST_BY_ACTION[ActionId.VANGOGH]


def test_get_credit_cost_prefers_configured_value_and_keeps_other_defaults():
    config = CreditsConfig.from_value({"costByAction": {"video": 25}})
    assert get_credit_cost("video", config) == 25
    assert get_credit_cost("foto", config) == 5


def test_get_credit_cost_rejects_unknown_action():
    with pytest.raises(ValueError):
        get_credit_cost("teleport", None)


def test_parse_action_id_accepts_aliases_and_rejects_garbage():
    assert parse_action_id("photo") is ActionId.PHOTO
    assert parse_action_id("Script") is ActionId.SCRIPT
    assert parse_action_id(" ROTEIRO ") is ActionId.SCRIPT
    assert parse_action_id("vangogh") is ActionId.VANGOGH
    assert parse_action_id("") is None
    assert parse_action_id(None) is None
    assert parse_action_id(7) is None
    assert parse_action_id("audio") is None


def test_monthly_credits_for_plan():
    assert get_monthly_credits_for_plan("gogh_essencial") == 50
    assert get_monthly_credits_for_plan("gogh_pro") == 200
    assert get_monthly_credits_for_plan("unknown_plan") == 0
    assert get_monthly_credits_for_plan(None) == 0

    config = CreditsConfig.from_value({"monthlyCreditsByPlan": {"gogh_pro": 500, "gogh_team": 900}})
    assert get_monthly_credits_for_plan("gogh_pro", config) == 500
    assert get_monthly_credits_for_plan("gogh_team", config) == 900
    assert get_monthly_credits_for_plan("gogh_essencial", config) == 50
    assert known_credit_plans(config) == ["gogh_essencial", "gogh_pro", "gogh_team"]


def test_config_from_value_drops_malformed_entries():
    config = CreditsConfig.from_value(
        {
            "monthlyCreditsByPlan": {"gogh_pro": -5, "gogh_essencial": "many", "gogh_lite": 20.0},
            "costByAction": {"foto": True, "video": 2.5, "roteiro": 0, "nope": 3},
        }
    )
    assert config.monthly_credits_by_plan == {"gogh_lite": 20}
    assert config.cost_by_action == {ActionId.SCRIPT: 0}
    assert CreditsConfig.from_value(None) == CreditsConfig()
    assert CreditsConfig.from_value(["not", "a", "dict"]) == CreditsConfig()


def test_config_from_value_drops_amounts_beyond_column_range():
    config = CreditsConfig.from_value(
        {
            "monthlyCreditsByPlan": {"gogh_pro": 2**31, "gogh_essencial": 2**31 - 1},
            "costByAction": {"video": 10**20, "foto": float("inf")},
        }
    )
    assert config.monthly_credits_by_plan == {"gogh_essencial": 2**31 - 1}
    assert config.cost_by_action == {}


def test_cost_table_lists_every_action():
    table = cost_table(None)
    assert set(table) == {action.value for action in ActionId}
    assert table["roteiro"] == 15


def test_credit_plan_parsing_skips_invalid_entries():
    assert CreditPlan.from_value({"id": "", "credits": 10}) is None
    assert CreditPlan.from_value({"id": "pack", "credits": 0}) is None
    assert CreditPlan.from_value("pack") is None

    plan = CreditPlan.from_value(
        {"id": "pack_100", "name": "100 créditos", "credits": 100, "stripe_checkout_url": "https://pay", "order": 2}
    )
    assert plan is not None
    assert plan.to_dict()["credits"] == 100
    assert plan.stripe_price_id is None


@pytest.mark.asyncio
async def test_static_resolver_defaults():
    config = await StaticConfigResolver().load()
    assert config == CreditsConfig()


@pytest.mark.asyncio
async def test_site_settings_resolver_returns_defaults_when_row_missing(session_maker):
    async with session_maker() as db:
        resolver = SiteSettingsConfigResolver(db)
        config = await resolver.load()
        assert config == CreditsConfig()
        assert resolver.raw_value is None
        assert get_credit_cost("video", config) == 10


@pytest.mark.asyncio
async def test_site_settings_resolver_save_overwrites_singleton(session_maker):
    async with session_maker() as db:
        resolver = SiteSettingsConfigResolver(db)
        await resolver.save(CreditsConfig.from_value({"costByAction": {"video": 12}}))
        await resolver.save(CreditsConfig.from_value({"monthlyCreditsByPlan": {"gogh_pro": 300}}))

    async with session_maker() as db:
        resolver = SiteSettingsConfigResolver(db)
        config = await resolver.load()
        assert config.monthly_credits_by_plan == {"gogh_pro": 300}
        # versionless overwrite: the earlier cost override is gone
        assert get_credit_cost("video", config) == 10
        assert resolver.raw_value == {"monthlyCreditsByPlan": {"gogh_pro": 300}, "costByAction": {}}


@pytest.mark.asyncio
async def test_site_settings_resolver_caches_per_instance(session_maker):
    async with session_maker() as db:
        db.add(SiteSetting(key=settings.CREDITS_CONFIG_KEY, value={"costByAction": {"foto": 7}}))
        await db.commit()

        resolver = SiteSettingsConfigResolver(db)
        first = await resolver.load()

        row = await db.get(SiteSetting, settings.CREDITS_CONFIG_KEY)
        row.value = {"costByAction": {"foto": 9}}
        await db.commit()

        assert await resolver.load() is first
        assert get_credit_cost("foto", await SiteSettingsConfigResolver(db).load()) == 9


@pytest.mark.asyncio
async def test_load_credit_plans_orders_and_filters(session_maker):
    async with session_maker() as db:
        db.add(
            SiteSetting(
                key=settings.CREDIT_PLANS_KEY,
                value=[
                    {"id": "pack_500", "name": "500", "credits": 500, "stripe_checkout_url": "https://a", "order": 2},
                    {"id": "broken", "credits": -1},
                    {"id": "pack_100", "name": "100", "credits": 100, "stripe_checkout_url": "https://b", "order": 1},
                ],
            )
        )
        await db.commit()

        plans = await SiteSettingsConfigResolver(db).load_credit_plans()
        assert [plan.id for plan in plans] == ["pack_100", "pack_500"]
