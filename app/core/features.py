from __future__ import annotations

from enum import Enum
from typing import Any


class Feature(str, Enum):
    PREMIUM_ANIMATIONS = "premium_animations"
    CUSTOM_QR_CODE = "custom_qr_code"
    CUSTOM_DOMAIN = "custom_domain"
    PRIORITY_SUPPORT = "priority_support"
    LIFETIME_EDITING = "lifetime_editing"
    TIME_COUNTER = "time_counter"
    ANALYTICS = "analytics"
    MUSIC = "music"


class Limit(str, Enum):
    MAX_GIFTS = "max_gifts"
    MAX_PHOTOS_PER_GIFT = "max_photos_per_gift"
    MAX_MUSIC_PER_GIFT = "max_music_per_gift"
    MAX_PHOTO_SIZE_MB = "max_photo_size_mb"
    MAX_MUSIC_SIZE_MB = "max_music_size_mb"


PLAN_START = "START"
PLAN_PREMIUM = "PREMIUM"
PLAN_ETERNAL = "ETERNAL"

# Tier order used for "same or higher plan" comparisons.
PLAN_ORDER: tuple[str, ...] = (PLAN_START, PLAN_PREMIUM, PLAN_ETERNAL)

UNLIMITED = -1


PLAN_ALIASES = {
    "START": PLAN_START,
    "BASIC": PLAN_START,
    "PREMIUM": PLAN_PREMIUM,
    "PRO": PLAN_PREMIUM,
    "ETERNAL": PLAN_ETERNAL,
}


PLAN_PRICES: dict[str, int] = {
    PLAN_START: 2900,
    PLAN_PREMIUM: 5900,
    PLAN_ETERNAL: 9900,
}


PLAN_DISPLAY_NAMES: dict[str, str] = {
    PLAN_START: "Start",
    PLAN_PREMIUM: "Premium",
    PLAN_ETERNAL: "Eternal",
}


PLAN_LIMITS: dict[str, dict[Limit, int]] = {
    PLAN_START: {
        Limit.MAX_GIFTS: UNLIMITED,
        Limit.MAX_PHOTOS_PER_GIFT: 5,
        Limit.MAX_MUSIC_PER_GIFT: 0,
        Limit.MAX_PHOTO_SIZE_MB: 5,
        Limit.MAX_MUSIC_SIZE_MB: 0,
    },
    PLAN_PREMIUM: {
        Limit.MAX_GIFTS: UNLIMITED,
        Limit.MAX_PHOTOS_PER_GIFT: 15,
        Limit.MAX_MUSIC_PER_GIFT: 1,
        Limit.MAX_PHOTO_SIZE_MB: 10,
        Limit.MAX_MUSIC_SIZE_MB: 10,
    },
    PLAN_ETERNAL: {
        Limit.MAX_GIFTS: UNLIMITED,
        Limit.MAX_PHOTOS_PER_GIFT: 30,
        Limit.MAX_MUSIC_PER_GIFT: UNLIMITED,
        Limit.MAX_PHOTO_SIZE_MB: 20,
        Limit.MAX_MUSIC_SIZE_MB: 50,
    },
}


PREMIUM_FEATURES: set[Feature] = {
    Feature.PREMIUM_ANIMATIONS,
    Feature.CUSTOM_QR_CODE,
    Feature.TIME_COUNTER,
    Feature.ANALYTICS,
    Feature.MUSIC,
}

ETERNAL_FEATURES: set[Feature] = PREMIUM_FEATURES | {
    Feature.CUSTOM_DOMAIN,
    Feature.PRIORITY_SUPPORT,
    Feature.LIFETIME_EDITING,
}


PLAN_FEATURES: dict[str, set[Feature]] = {
    PLAN_START: set(),
    PLAN_PREMIUM: PREMIUM_FEATURES,
    PLAN_ETERNAL: ETERNAL_FEATURES,
}


VALID_PAYMENT_METHODS: frozenset[str] = frozenset({"credit_card", "pix", "boleto"})


def normalize_plan(raw_plan: str | None) -> str | None:
    """Return the canonical plan name, or None when the value is not a known plan."""
    if not raw_plan:
        return None
    normalized = str(raw_plan).strip().upper()
    return PLAN_ALIASES.get(normalized)


def plan_rank(plan: str | None) -> int:
    if plan not in PLAN_ORDER:
        return -1
    return PLAN_ORDER.index(plan)


def get_plan_price(plan: str) -> int:
    return PLAN_PRICES[plan]


def get_plan_limit(plan: str, limit: Limit | str) -> int:
    resolved = Limit(limit) if isinstance(limit, str) else limit
    return PLAN_LIMITS[plan][resolved]


def plan_has_feature(plan: str | None, feature: Feature | str) -> bool:
    if plan not in PLAN_FEATURES:
        return False
    resolved = Feature(feature) if isinstance(feature, str) else feature
    return resolved in PLAN_FEATURES[plan]


def serialize_limits(plan: str) -> dict[str, Any]:
    limits: dict[str, Any] = {limit.value: value for limit, value in PLAN_LIMITS[plan].items()}
    for feature in Feature:
        if feature == Feature.MUSIC:
            continue
        limits[feature.value] = feature in PLAN_FEATURES[plan]
    return limits


def available_upgrades(plan: str | None) -> list[str]:
    return list(PLAN_ORDER[plan_rank(plan) + 1:])
