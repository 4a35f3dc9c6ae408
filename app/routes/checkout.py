from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies.auth import get_current_user
from app.dependencies.rate_limit import rate_limit
from app.models.user import User
from app.services import checkout as checkout_service
from app.services import subscription as subscription_service
from app.services.payment_gateway import PaymentGateway, get_payment_gateway
from app.services.side_effects import SideEffects, get_side_effects

router = APIRouter(tags=["Checkout"])


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan: str
    payment_method: str
    coupon_code: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payment_id: Optional[str] = None
    gateway_id: Optional[str] = None
    card_data: Optional[dict[str, Any]] = None


class CouponValidationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str
    plan: str


@router.post("/checkout", dependencies=[Depends(rate_limit("checkout", 5, 60))])
def create_checkout(
    payload: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return checkout_service.create_checkout(
        db,
        current_user,
        payload.plan,
        payload.payment_method,
        payload.coupon_code,
        gateway,
        side_effects,
    ).to_response()


@router.post("/checkout/confirm", dependencies=[Depends(rate_limit("checkout-confirm", 10, 60))])
def confirm_payment(
    payload: ConfirmPaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return subscription_service.confirm_payment(
        db,
        current_user,
        gateway,
        payment_id=payload.payment_id,
        gateway_id=payload.gateway_id,
        card_data=payload.card_data,
        side_effects=side_effects,
    ).to_response()


@router.post("/coupons/validate", dependencies=[Depends(rate_limit("coupon-validate", 10, 60))])
def validate_coupon(
    payload: CouponValidationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return checkout_service.validate_coupon(db, payload.code, payload.plan).to_response()
