from app.core.features import (
    PLAN_ETERNAL,
    PLAN_PREMIUM,
    PLAN_START,
    UNLIMITED,
    Feature,
    Limit,
    available_upgrades,
    get_plan_limit,
    normalize_plan,
    plan_has_feature,
    plan_rank,
    serialize_limits,
)
from app.services.upgrade import build_upgrade_hint


def test_normalize_plan_accepts_known_names_only():
    assert normalize_plan(" premium ") == PLAN_PREMIUM
    assert normalize_plan("eternal") == PLAN_ETERNAL
    assert normalize_plan("GOLD") is None
    assert normalize_plan(None) is None


def test_plan_ranks_are_ordered():
    assert plan_rank(PLAN_START) < plan_rank(PLAN_PREMIUM) < plan_rank(PLAN_ETERNAL)
    assert plan_rank("GOLD") == -1


def test_plan_limits_table():
    assert get_plan_limit(PLAN_START, Limit.MAX_PHOTOS_PER_GIFT) == 5
    assert get_plan_limit(PLAN_PREMIUM, Limit.MAX_PHOTOS_PER_GIFT) == 15
    assert get_plan_limit(PLAN_ETERNAL, Limit.MAX_PHOTOS_PER_GIFT) == 30
    assert get_plan_limit(PLAN_START, Limit.MAX_MUSIC_PER_GIFT) == 0
    assert get_plan_limit(PLAN_PREMIUM, "max_music_per_gift") == 1
    assert get_plan_limit(PLAN_ETERNAL, Limit.MAX_MUSIC_PER_GIFT) == UNLIMITED


def test_plan_features():
    assert not plan_has_feature(PLAN_START, Feature.ANALYTICS)
    assert plan_has_feature(PLAN_PREMIUM, "analytics")
    assert not plan_has_feature(PLAN_PREMIUM, Feature.CUSTOM_DOMAIN)
    assert plan_has_feature(PLAN_ETERNAL, Feature.CUSTOM_DOMAIN)
    assert not plan_has_feature("GOLD", Feature.ANALYTICS)


def test_serialized_limits_include_feature_flags():
    limits = serialize_limits(PLAN_PREMIUM)
    assert limits["max_photos_per_gift"] == 15
    assert limits["premium_animations"] is True
    assert limits["custom_domain"] is False


def test_available_upgrades():
    assert available_upgrades(PLAN_START) == [PLAN_PREMIUM, PLAN_ETERNAL]
    assert available_upgrades(PLAN_ETERNAL) == []


def test_upgrade_hint_for_inactive_user_points_to_entry_plan():
    hint = build_upgrade_hint(PLAN_START, False, Limit.MAX_GIFTS)
    assert hint["recommended_plan"] == PLAN_START
    assert hint["current_plan"] is None


def test_upgrade_hint_never_recommends_a_lower_plan():
    hint = build_upgrade_hint(PLAN_ETERNAL, True, Limit.MAX_PHOTOS_PER_GIFT)
    assert hint["recommended_plan"] is None
    assert hint["benefits"] == []

    hint = build_upgrade_hint(PLAN_START, True, Feature.MUSIC)
    assert hint["recommended_plan"] == PLAN_PREMIUM
    assert hint["recommended_plan_price"] == 5900
