from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.results import ServiceResult
from app.db import get_db
from app.dependencies.auth import get_current_user
from app.dependencies.rate_limit import rate_limit
from app.models.user import User
from app.services import subscription as subscription_service
from app.services.entitlements import get_effective_plan
from app.services.side_effects import SideEffects, get_side_effects

router = APIRouter(prefix="/subscription", tags=["Subscription"])


@router.get("")
def get_subscription(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return subscription_service.get_subscription_overview(db, current_user).to_response()


@router.get("/plan")
def get_plan(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    effective = get_effective_plan(db, current_user.id)
    return ServiceResult.success(**effective.to_dict()).to_response()


@router.post("/cancel", dependencies=[Depends(rate_limit("subscription-cancel", 5, 60))])
def cancel_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return subscription_service.cancel_subscription(db, current_user, side_effects).to_response()
