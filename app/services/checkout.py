from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.features import (
    PLAN_DISPLAY_NAMES,
    VALID_PAYMENT_METHODS,
    get_plan_price,
    normalize_plan,
    plan_rank,
)
from app.core.results import ErrorCode, ServiceResult
from app.models.coupon import DISCOUNT_FIXED, DISCOUNT_PERCENTAGE, Coupon
from app.models.payment import PAYMENT_PENDING, Payment
from app.models.user import User
from app.services.audit_logger import AuditEvent
from app.services.entitlements import get_effective_plan
from app.services.payment_gateway import PaymentGateway, PaymentGatewayError
from app.services.side_effects import SideEffects

logger = logging.getLogger(__name__)


@dataclass
class CouponEvaluation:
    valid: bool
    discount: int = 0
    reason: str | None = None
    message: str | None = None


def generate_idempotency_key(user_id, plan: str, now: datetime | None = None) -> str:
    """Deterministic per (user, plan, minute bucket)."""
    now = now or clock.utcnow()
    bucket = int(now.timestamp()) // config.IDEMPOTENCY_BUCKET_SECONDS
    return hashlib.sha256(f"{user_id}:{plan}:{bucket}".encode("utf-8")).hexdigest()


def normalize_coupon_code(code: str | None) -> str:
    return (code or "").strip().upper()


def calculate_discount(price: int, discount_type: str, discount_value: int) -> int:
    if discount_type == DISCOUNT_PERCENTAGE:
        return price * discount_value // 100
    if discount_type == DISCOUNT_FIXED:
        return discount_value
    return 0


def final_amount(price: int, discount: int) -> int:
    return max(0, price - discount)


def evaluate_coupon(coupon: Coupon | None, plan: str, price: int, now: datetime | None = None) -> CouponEvaluation:
    now = now or clock.utcnow()

    if coupon is None:
        return CouponEvaluation(valid=False, reason="not_found", message="Coupon not found")

    if not coupon.active:
        return CouponEvaluation(valid=False, reason="inactive", message="This coupon is no longer active")

    valid_from = clock.as_utc(coupon.valid_from)
    if valid_from and valid_from > now:
        return CouponEvaluation(valid=False, reason="not_yet_valid", message="This coupon is not valid yet")

    valid_until = clock.as_utc(coupon.valid_until)
    if valid_until and valid_until < now:
        return CouponEvaluation(valid=False, reason="expired", message="This coupon has expired")

    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        return CouponEvaluation(valid=False, reason="usage_limit_reached", message="This coupon has reached its usage limit")

    valid_plans = coupon.valid_plans or []
    if valid_plans and plan not in valid_plans:
        return CouponEvaluation(valid=False, reason="plan_not_eligible", message="This coupon is not valid for the selected plan")

    if coupon.min_purchase and price < coupon.min_purchase:
        return CouponEvaluation(
            valid=False,
            reason="minimum_not_met",
            message=f"Minimum purchase: R$ {coupon.min_purchase / 100:.2f}",
        )

    return CouponEvaluation(valid=True, discount=calculate_discount(price, coupon.discount_type, coupon.discount_value))


def _find_coupon(db: Session, code: str | None) -> Coupon | None:
    normalized = normalize_coupon_code(code)
    if not normalized:
        return None
    return db.query(Coupon).filter(Coupon.code == normalized).first()


def validate_coupon(db: Session, code: str, plan: str) -> ServiceResult:
    resolved_plan = normalize_plan(plan)
    if not normalize_coupon_code(code) or resolved_plan is None:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Coupon code and a valid plan are required")

    coupon = _find_coupon(db, code)
    price = get_plan_price(resolved_plan)
    evaluation = evaluate_coupon(coupon, resolved_plan, price)
    if not evaluation.valid:
        return ServiceResult.success(valid=False, reason=evaluation.reason, message=evaluation.message)

    if coupon.discount_type == DISCOUNT_PERCENTAGE:
        display = f"{coupon.discount_value}% off"
    else:
        display = f"R$ {coupon.discount_value / 100:.2f} off"

    return ServiceResult.success(
        valid=True,
        coupon={
            "code": coupon.code,
            "description": coupon.description,
            "discount_type": coupon.discount_type,
            "discount_value": coupon.discount_value,
        },
        original_price=price,
        discount=evaluation.discount,
        final_price=final_amount(price, evaluation.discount),
        discount_display=display,
    )


def _existing_checkout(payment: Payment) -> ServiceResult:
    return ServiceResult.success(
        checkout={
            "payment_id": payment.id,
            "gateway_id": payment.gateway_id,
            "amount": payment.amount,
            "currency": payment.currency,
            "plan": payment.target_plan,
            "payment_method": payment.method,
            "is_existing": True,
        }
    )


def _find_reusable_payment(db: Session, user_id, plan: str) -> Payment | None:
    window_start = clock.utcnow() - timedelta(minutes=config.CHECKOUT_REUSE_WINDOW_MINUTES)
    return (
        db.query(Payment)
        .filter(
            Payment.user_id == user_id,
            Payment.target_plan == plan,
            Payment.status == PAYMENT_PENDING,
            Payment.created_at >= window_start,
        )
        .order_by(Payment.created_at.desc())
        .first()
    )


def create_checkout(
    db: Session,
    user: User,
    plan: str,
    payment_method: str,
    coupon_code: str | None,
    gateway: PaymentGateway,
    side_effects: SideEffects | None = None,
) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    resolved_plan = normalize_plan(plan)
    if resolved_plan is None or str(plan).strip().upper() != resolved_plan:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Invalid plan")

    if payment_method not in VALID_PAYMENT_METHODS:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Invalid payment method")

    effective = get_effective_plan(db, user.id)
    if effective.is_active and plan_rank(effective.plan) >= plan_rank(resolved_plan):
        return ServiceResult.failure(
            ErrorCode.ALREADY_SUBSCRIBED,
            "You already have this plan or a higher one",
            current_plan=effective.plan,
        )

    existing = _find_reusable_payment(db, user.id, resolved_plan)
    if existing is not None:
        logger.info("checkout_reused payment_id=%s user_id=%s", existing.id, user.id)
        return _existing_checkout(existing)

    price = get_plan_price(resolved_plan)
    discount = 0
    coupon_id = None
    coupon_info: dict[str, Any] | None = None
    if coupon_code:
        coupon = _find_coupon(db, coupon_code)
        evaluation = evaluate_coupon(coupon, resolved_plan, price)
        if evaluation.valid:
            discount = evaluation.discount
            coupon_id = coupon.id
            coupon_info = {"code": coupon.code, "applied": True}
        else:
            coupon_info = {"code": normalize_coupon_code(coupon_code), "applied": False, "reason": evaluation.reason}

    amount = final_amount(price, discount)
    plan_name = PLAN_DISPLAY_NAMES[resolved_plan]
    idempotency_key = generate_idempotency_key(user.id, resolved_plan)

    intent = gateway.create_payment_intent(
        amount=amount,
        method=payment_method,
        customer_email=user.email,
        currency=config.CURRENCY,
        description=f"{plan_name} subscription - Eternal Gift",
        metadata={"user_id": str(user.id), "plan": resolved_plan},
    )

    payment = Payment(
        user_id=user.id,
        gateway_id=intent.id,
        amount=amount,
        currency=config.CURRENCY,
        method=payment_method,
        status=PAYMENT_PENDING,
        gateway_status=intent.status,
        target_plan=resolved_plan,
        idempotency_key=idempotency_key,
        coupon_id=coupon_id,
        description=f"{plan_name} subscription",
        created_at=clock.utcnow(),
    )

    try:
        db.add(payment)
        db.commit()
    except IntegrityError:
        db.rollback()
        try:
            gateway.cancel_payment(intent.id)
        except PaymentGatewayError as exc:
            logger.warning("checkout_orphan_intent intent_id=%s error=%s", intent.id, exc)

        winner = db.query(Payment).filter(Payment.idempotency_key == idempotency_key).first()
        if winner is not None and winner.status == PAYMENT_PENDING and winner.user_id == user.id:
            logger.info("checkout_idempotent payment_id=%s user_id=%s", winner.id, user.id)
            return _existing_checkout(winner)
        return ServiceResult.failure(ErrorCode.CONFLICT, "A checkout for this plan was just processed. Try again in a minute.")

    logger.info(
        "checkout_created payment_id=%s user_id=%s plan=%s amount=%s",
        payment.id,
        user.id,
        resolved_plan,
        amount,
    )
    side_effects.audit(
        AuditEvent.PAYMENT_INITIATED,
        f"plan={resolved_plan} amount={amount} method={payment_method}",
        user_id=user.id,
    )

    checkout = {
        "payment_id": payment.id,
        "amount": amount,
        "original_amount": price,
        "discount": discount,
        "currency": payment.currency,
        "plan": resolved_plan,
        "plan_name": plan_name,
        "payment_method": payment_method,
        "is_existing": False,
        "coupon": coupon_info,
    }
    checkout.update(intent.public_details())
    return ServiceResult.success(checkout=checkout)
