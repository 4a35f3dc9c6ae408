from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.core import clock
from app.core.features import (
    PLAN_START,
    UNLIMITED,
    Feature,
    Limit,
    get_plan_limit,
    normalize_plan,
    plan_has_feature,
    plan_rank,
    serialize_limits,
)
from app.models.subscription import STATUS_ACTIVE, STATUS_EXPIRED, Subscription
from app.services.upgrade import build_upgrade_hint

logger = logging.getLogger(__name__)

REASON_NO_SUBSCRIPTION = "no_subscription"
REASON_EXPIRED = "expired"
REASON_GRACE_PERIOD_ENDED = "grace_period_ended"
REASON_INACTIVE = "inactive"
REASON_ACTIVE = "active"


def is_subscription_active(status: str | None, end_date: datetime | None, now: datetime | None = None) -> bool:
    """
    Single definition of "entitled right now", from stored fields only.

    The resolver, checkout and the expiry sweep all call this so the lazy
    read-time check and the sweep can never disagree.
    """
    if status != STATUS_ACTIVE:
        return False
    if end_date is None:
        return True
    now = now or clock.utcnow()
    return clock.as_utc(end_date) >= now


@dataclass
class EffectivePlan:
    plan: str
    is_active: bool
    reason: str
    limits: dict[str, Any] | None = None
    expires_at: datetime | None = None
    subscription_id: Any = None
    subscription_status: str | None = None
    subscription_plan: str | None = None
    auto_renew: bool | None = None
    cancelled_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QuotaDecision:
    allowed: bool
    limit: int | None
    remaining: int | None
    requires_subscription: bool = False
    requires_upgrade: bool = False
    feature_available: bool = True
    reason: str | None = None
    plan: str | None = None
    upgrade: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def resolve_effective_plan(subscription: Subscription | None, now: datetime | None = None) -> EffectivePlan:
    """Pure resolver over a subscription row (or None)."""
    now = now or clock.utcnow()

    if subscription is None:
        return EffectivePlan(plan=PLAN_START, is_active=False, reason=REASON_NO_SUBSCRIPTION)

    stored_plan = normalize_plan(subscription.plan) or PLAN_START
    details = {
        "expires_at": clock.as_utc(subscription.end_date),
        "subscription_id": subscription.id,
        "subscription_status": subscription.status,
        "subscription_plan": stored_plan,
        "auto_renew": subscription.auto_renew,
        "cancelled_at": clock.as_utc(subscription.cancelled_at),
    }

    if subscription.status == STATUS_EXPIRED:
        return EffectivePlan(plan=PLAN_START, is_active=False, reason=REASON_EXPIRED, **details)

    if subscription.status != STATUS_ACTIVE:
        return EffectivePlan(plan=PLAN_START, is_active=False, reason=REASON_INACTIVE, **details)

    if not is_subscription_active(subscription.status, subscription.end_date, now):
        # The sweep has not flipped the row yet; reads must not wait for it.
        return EffectivePlan(plan=PLAN_START, is_active=False, reason=REASON_GRACE_PERIOD_ENDED, **details)

    return EffectivePlan(
        plan=stored_plan,
        is_active=True,
        reason=REASON_ACTIVE,
        limits=serialize_limits(stored_plan),
        **details,
    )


def get_effective_plan(db: Session, user_id) -> EffectivePlan:
    """
    Authoritative plan for `user_id`, derived from the subscription row.

    User.plan is a display cache and is never consulted here.
    """
    subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    return resolve_effective_plan(subscription)


def _build_upgrade(effective: EffectivePlan, feature: Feature | Limit | str | None) -> dict[str, Any]:
    return build_upgrade_hint(effective.plan, effective.is_active, feature)


def _check_quota(effective: EffectivePlan, limit_key: Limit, current_count: int) -> QuotaDecision:
    if not effective.is_active:
        return QuotaDecision(
            allowed=False,
            limit=None,
            remaining=None,
            requires_subscription=True,
            reason=effective.reason,
            upgrade=_build_upgrade(effective, limit_key),
        )

    limit = get_plan_limit(effective.plan, limit_key)
    if limit == UNLIMITED:
        return QuotaDecision(allowed=True, limit=UNLIMITED, remaining=UNLIMITED, plan=effective.plan)

    current_count = max(0, int(current_count))
    allowed = current_count < limit
    decision = QuotaDecision(
        allowed=allowed,
        limit=limit,
        remaining=max(0, limit - current_count),
        requires_upgrade=not allowed,
        reason=None if allowed else "limit_reached",
        plan=effective.plan,
    )
    if not allowed:
        decision.upgrade = _build_upgrade(effective, limit_key)
    return decision


def can_user_create_gift(db: Session, user_id, current_count: int) -> QuotaDecision:
    return _check_quota(get_effective_plan(db, user_id), Limit.MAX_GIFTS, current_count)


def can_user_add_photo(db: Session, user_id, current_count: int) -> QuotaDecision:
    return _check_quota(get_effective_plan(db, user_id), Limit.MAX_PHOTOS_PER_GIFT, current_count)


def can_user_add_music(db: Session, user_id, current_count: int) -> QuotaDecision:
    effective = get_effective_plan(db, user_id)
    if effective.is_active and get_plan_limit(effective.plan, Limit.MAX_MUSIC_PER_GIFT) == 0:
        # The plan does not include music at all, as opposed to an exhausted quota.
        return QuotaDecision(
            allowed=False,
            limit=0,
            remaining=0,
            requires_upgrade=True,
            feature_available=False,
            reason="feature_not_in_plan",
            plan=effective.plan,
            upgrade=_build_upgrade(effective, Feature.MUSIC),
        )
    return _check_quota(effective, Limit.MAX_MUSIC_PER_GIFT, current_count)


def has_feature_access(db: Session, user_id, feature: Feature | str) -> bool:
    effective = get_effective_plan(db, user_id)
    return effective.is_active and plan_has_feature(effective.plan, feature)


def validate_plan_access(db: Session, user_id, required_plan: str) -> bool:
    """True when the user is entitled to `required_plan` or a higher tier."""
    effective = get_effective_plan(db, user_id)
    if not effective.is_active:
        return False
    required = normalize_plan(required_plan)
    if required is None:
        return False
    return plan_rank(effective.plan) >= plan_rank(required)
