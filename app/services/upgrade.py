from __future__ import annotations

from typing import Any

from app.core.features import (
    PLAN_DISPLAY_NAMES,
    PLAN_ETERNAL,
    PLAN_PREMIUM,
    PLAN_PRICES,
    PLAN_START,
    Feature,
    Limit,
    available_upgrades,
)


_FEATURE_UPGRADE_MAP: dict[str, dict[str, Any]] = {
    Limit.MAX_PHOTOS_PER_GIFT.value: {
        "recommended_plan": PLAN_PREMIUM,
        "benefits": [
            "Up to 15 HD photos per gift",
            "Premium animations",
        ],
    },
    Feature.MUSIC.value: {
        "recommended_plan": PLAN_PREMIUM,
        "benefits": [
            "Background music",
            "Time counter",
        ],
    },
    Limit.MAX_MUSIC_PER_GIFT.value: {
        "recommended_plan": PLAN_ETERNAL,
        "benefits": [
            "Unlimited songs per gift",
            "Lifetime editing",
        ],
    },
    Feature.CUSTOM_DOMAIN.value: {
        "recommended_plan": PLAN_ETERNAL,
        "benefits": [
            "Custom domain",
            "Priority support",
        ],
    },
}


def build_upgrade_hint(current_plan: str | None, is_active: bool, feature: Feature | Limit | str | None = None) -> dict[str, Any]:
    """Suggest the next plan for a denied request; attached to 403 bodies."""
    feature_name = feature.value if isinstance(feature, (Feature, Limit)) else (str(feature) if feature else None)

    if not is_active:
        recommended_plan = PLAN_START
        benefits = ["Create unlimited gift pages", "Share them with a link and QR code"]
    else:
        recommendation = _FEATURE_UPGRADE_MAP.get(feature_name or "", {})
        upgrades = available_upgrades(current_plan)
        recommended_plan = recommendation.get("recommended_plan", upgrades[0] if upgrades else None)
        benefits = recommendation.get("benefits", ["Higher limits and premium features"])
        if recommended_plan not in upgrades:
            recommended_plan = upgrades[0] if upgrades else None

    return {
        "feature": feature_name,
        "current_plan": current_plan if is_active else None,
        "recommended_plan": recommended_plan,
        "recommended_plan_name": PLAN_DISPLAY_NAMES.get(recommended_plan) if recommended_plan else None,
        "recommended_plan_price": PLAN_PRICES.get(recommended_plan) if recommended_plan else None,
        "benefits": benefits if recommended_plan else [],
    }
