from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.features import Feature, plan_has_feature
from app.core.results import ErrorCode, error_body
from app.db import get_db
from app.dependencies.auth import get_current_user
from app.services.entitlements import EffectivePlan, get_effective_plan
from app.services.upgrade import build_upgrade_hint

logger = logging.getLogger(__name__)


def require_active_subscription(
    request: Request,
    current_user=Depends(get_current_user),
    db: Session = Depends(get_db),
) -> EffectivePlan:
    effective = get_effective_plan(db, current_user.id)
    if not effective.is_active:
        logger.warning(
            "subscription_required user_id=%s reason=%s path=%s",
            current_user.id,
            effective.reason,
            request.url.path,
        )
        raise HTTPException(
            status_code=403,
            detail=error_body(
                ErrorCode.REQUIRES_SUBSCRIPTION,
                "An active subscription is required",
                reason=effective.reason,
                upgrade=build_upgrade_hint(effective.plan, False),
            ),
        )
    return effective


def require_feature(feature: Feature | str, detail: Any = None):
    feature_name = feature.value if isinstance(feature, Feature) else str(feature)

    def _dependency(
        request: Request,
        effective: EffectivePlan = Depends(require_active_subscription),
    ) -> EffectivePlan:
        if not plan_has_feature(effective.plan, feature):
            logger.warning(
                "feature_access_denied plan=%s feature=%s path=%s method=%s",
                effective.plan,
                feature_name,
                request.url.path,
                request.method,
            )
            structured = error_body(
                ErrorCode.FEATURE_UNAVAILABLE,
                "Your plan does not include this feature",
                upgrade=build_upgrade_hint(effective.plan, True, feature_name),
            )
            if detail is not None:
                structured["error"]["detail"] = detail
            raise HTTPException(status_code=403, detail=structured)
        return effective

    return _dependency
