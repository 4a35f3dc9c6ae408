from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.features import PLAN_START, normalize_plan
from app.core.results import ErrorCode, ServiceResult
from app.models.coupon import Coupon
from app.models.payment import PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PENDING, Payment
from app.models.subscription import STATUS_ACTIVE, STATUS_EXPIRED, Subscription
from app.models.user import User
from app.services import email_service
from app.services.audit_logger import AuditEvent, create_audit_log
from app.services.entitlements import get_effective_plan, is_subscription_active
from app.services.payment_gateway import (
    INTENT_COMPLETED,
    INTENT_FAILED,
    PaymentGateway,
    PaymentGatewayError,
)
from app.services.side_effects import SideEffects

logger = logging.getLogger(__name__)


def sync_user_plan(db: Session, user_id, plan: str) -> None:
    """
    The only write path for User.plan.

    User.plan is a display cache of the subscription; authorization always
    goes through get_effective_plan.
    """
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(plan=plan)
        .execution_options(synchronize_session="fetch")
    )


def serialize_subscription(subscription: Subscription | None) -> dict[str, Any] | None:
    if subscription is None:
        return None
    return {
        "id": subscription.id,
        "plan": subscription.plan,
        "status": subscription.status,
        "start_date": clock.as_utc(subscription.start_date),
        "end_date": clock.as_utc(subscription.end_date),
        "auto_renew": subscription.auto_renew,
        "cancelled_at": clock.as_utc(subscription.cancelled_at),
    }


def _parse_uuid(value) -> uuid.UUID | None:
    if value is None or value == "":
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _find_owned_payment(db: Session, user_id, payment_id=None, gateway_id: str | None = None) -> Payment | None:
    query = db.query(Payment).filter(Payment.user_id == user_id)
    parsed_id = _parse_uuid(payment_id)
    if parsed_id is not None:
        return query.filter(Payment.id == parsed_id).first()
    if gateway_id:
        return query.filter(Payment.gateway_id == gateway_id).first()
    return None


def _already_processed() -> ServiceResult:
    return ServiceResult.success(already_processed=True, message="Payment was already processed")


def _not_pending(status: str) -> ServiceResult:
    return ServiceResult.failure(
        ErrorCode.PAYMENT_NOT_PENDING,
        f"Payment cannot be confirmed. Status: {status}",
        status=status,
    )


def _mark_failed(db: Session, payment: Payment, gateway_status: str) -> bool:
    now = clock.utcnow()
    result = db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PAYMENT_PENDING)
        .values(status=PAYMENT_FAILED, gateway_status=gateway_status, processed_at=now, idempotency_key=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _activate_subscription(db: Session, payment: Payment) -> Subscription | None:
    """
    Payment -> Subscription -> User in one transaction.

    Returns None when another request completed the payment first.
    """
    now = clock.utcnow()
    plan = payment.target_plan

    claimed = db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PAYMENT_PENDING)
        .values(status=PAYMENT_COMPLETED, gateway_status=INTENT_COMPLETED, processed_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        return None

    if payment.coupon_id is not None:
        db.execute(
            update(Coupon)
            .where(Coupon.id == payment.coupon_id)
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )

    end_date = clock.add_months(now, config.SUBSCRIPTION_PERIOD_MONTHS)
    subscription = (
        db.query(Subscription)
        .filter(Subscription.user_id == payment.user_id)
        .with_for_update()
        .first()
    )
    if subscription is None:
        subscription = Subscription(user_id=payment.user_id)
        db.add(subscription)

    subscription.plan = plan
    subscription.status = STATUS_ACTIVE
    subscription.start_date = now
    subscription.end_date = end_date
    subscription.auto_renew = True
    subscription.cancelled_at = None
    db.flush()

    sync_user_plan(db, payment.user_id, plan)

    db.execute(
        update(Payment)
        .where(Payment.id == payment.id)
        .values(subscription_id=subscription.id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return subscription


def confirm_payment(
    db: Session,
    user: User,
    gateway: PaymentGateway,
    payment_id=None,
    gateway_id: str | None = None,
    card_data: dict[str, Any] | None = None,
    side_effects: SideEffects | None = None,
) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    if not payment_id and not gateway_id:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Payment id is required")

    payment = _find_owned_payment(db, user.id, payment_id, gateway_id)
    if payment is None:
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "Payment not found")

    if payment.status == PAYMENT_COMPLETED:
        logger.info("payment_already_processed payment_id=%s", payment.id)
        return _already_processed()

    if payment.status != PAYMENT_PENDING:
        return _not_pending(payment.status)

    target_plan = normalize_plan(payment.target_plan)
    if target_plan is None:
        logger.error("payment_missing_target_plan payment_id=%s", payment.id)
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Payment has no plan to activate")

    try:
        intent = gateway.confirm_payment(payment.gateway_id, card_data)
    except PaymentGatewayError as exc:
        logger.warning("payment_gateway_error payment_id=%s error=%s", payment.id, exc)
        return ServiceResult.failure(
            ErrorCode.GATEWAY_DECLINED,
            "Payment could not be confirmed. Please try again.",
            status=payment.status,
        )

    if intent.status == INTENT_FAILED:
        if not _mark_failed(db, payment, intent.status):
            db.refresh(payment)
            if payment.status == PAYMENT_COMPLETED:
                return _already_processed()
            return _not_pending(payment.status)

        logger.info("payment_failed payment_id=%s reason=%s", payment.id, intent.failure_reason)
        side_effects.audit(
            AuditEvent.PAYMENT_FAILED,
            f"payment_id={payment.id} plan={target_plan} reason={intent.failure_reason}",
            user_id=user.id,
        )
        return ServiceResult.failure(
            ErrorCode.GATEWAY_DECLINED,
            "Payment declined. Check your details and try again.",
            status=PAYMENT_FAILED,
        )

    if intent.status != INTENT_COMPLETED:
        db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PAYMENT_PENDING)
            .values(gateway_status=intent.status)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return ServiceResult.success(
            status="processing",
            message="Payment is processing. You will be notified once it is confirmed.",
        )

    try:
        subscription = _activate_subscription(db, payment)
    except Exception:
        db.rollback()
        raise

    if subscription is None:
        logger.info("payment_confirm_race_lost payment_id=%s", payment.id)
        return _already_processed()

    logger.info(
        "subscription_activated user_id=%s plan=%s payment_id=%s subscription_id=%s",
        user.id,
        target_plan,
        payment.id,
        subscription.id,
    )
    side_effects.audit(
        AuditEvent.SUBSCRIPTION_ACTIVATED,
        f"plan={target_plan} payment_id={payment.id} amount={payment.amount}",
        user_id=user.id,
    )
    side_effects.dispatch(
        "email:payment_confirmation",
        email_service.send_payment_confirmation_email,
        user.email,
        user.name,
        target_plan,
        payment.amount,
        clock.as_utc(subscription.end_date),
    )

    return ServiceResult.success(
        already_processed=False,
        message="Payment confirmed. Your subscription is active.",
        subscription=serialize_subscription(subscription),
    )


def cancel_subscription(db: Session, user: User, side_effects: SideEffects | None = None) -> ServiceResult:
    """
    Stop auto-renewal. Status stays ACTIVE and access continues until end_date.
    """
    side_effects = side_effects or SideEffects()

    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if subscription is None:
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "No subscription found")

    if subscription.status == STATUS_EXPIRED:
        return ServiceResult.failure(ErrorCode.SUBSCRIPTION_EXPIRED, "This subscription has already expired")

    if not subscription.auto_renew or subscription.cancelled_at is not None:
        return ServiceResult.success(
            already_cancelled=True,
            message="Subscription was already cancelled",
            subscription=serialize_subscription(subscription),
        )

    subscription.auto_renew = False
    subscription.cancelled_at = clock.utcnow()
    db.commit()

    logger.info("subscription_cancelled user_id=%s subscription_id=%s", user.id, subscription.id)
    side_effects.audit(
        AuditEvent.SUBSCRIPTION_CANCELLED,
        f"subscription_id={subscription.id} plan={subscription.plan}",
        user_id=user.id,
    )
    side_effects.dispatch(
        "email:subscription_cancelled",
        email_service.send_subscription_cancelled_email,
        user.email,
        user.name,
        subscription.plan,
        clock.as_utc(subscription.end_date),
    )

    return ServiceResult.success(
        already_cancelled=False,
        message="Subscription cancelled. You keep access until the end of the current period.",
        subscription=serialize_subscription(subscription),
    )


def expire_overdue_subscriptions(db: Session, now=None) -> int:
    """
    Flip ACTIVE subscriptions past their end date to EXPIRED.

    Each row commits on its own so one bad row does not block the rest.
    Returns the number of rows transitioned.
    """
    now = now or clock.utcnow()
    candidates = (
        db.query(Subscription.id)
        .filter(Subscription.status == STATUS_ACTIVE, Subscription.end_date < now)
        .all()
    )

    expired = 0
    for (subscription_id,) in candidates:
        try:
            subscription = (
                db.query(Subscription)
                .filter(Subscription.id == subscription_id)
                .with_for_update()
                .first()
            )
            if subscription is None or is_subscription_active(subscription.status, subscription.end_date, now):
                db.rollback()
                continue
            if subscription.status != STATUS_ACTIVE:
                db.rollback()
                continue

            subscription.status = STATUS_EXPIRED
            subscription.auto_renew = False
            sync_user_plan(db, subscription.user_id, PLAN_START)
            create_audit_log(
                db=db,
                event_type=AuditEvent.SUBSCRIPTION_EXPIRED,
                event_description=f"subscription_id={subscription.id} plan={subscription.plan}",
                user_id=subscription.user_id,
                auto_commit=False,
            )
            db.commit()
            expired += 1
        except Exception:
            db.rollback()
            logger.exception("subscription_expire_failed subscription_id=%s", subscription_id)

    logger.info("subscriptions_expired count=%s", expired)
    return expired


def get_subscription_overview(db: Session, user: User) -> ServiceResult:
    effective = get_effective_plan(db, user.id)
    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    payments = (
        db.query(Payment)
        .filter(Payment.user_id == user.id)
        .order_by(Payment.created_at.desc())
        .limit(10)
        .all()
    )
    return ServiceResult.success(
        effective_plan=effective.to_dict(),
        subscription=serialize_subscription(subscription),
        payments=[
            {
                "id": payment.id,
                "amount": payment.amount,
                "currency": payment.currency,
                "method": payment.method,
                "status": payment.status,
                "plan": payment.target_plan,
                "created_at": clock.as_utc(payment.created_at),
                "processed_at": clock.as_utc(payment.processed_at),
            }
            for payment in payments
        ],
    )
