from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.features import PLAN_START
from app.core.results import ErrorCode, ServiceResult
from app.core.security import (
    burn_password_check,
    canonicalize_email,
    create_session_credential,
    decode_session_credential,
    hash_password,
    is_valid_email,
    validate_password_strength,
    verify_password,
)
from app.models.user import User
from app.services import email_service
from app.services.audit_logger import AuditEvent, create_audit_log
from app.services.entitlements import get_effective_plan
from app.services.sessions import (
    create_session,
    revoke_session,
    revoke_user_sessions,
    session_lifetime,
)
from app.services.side_effects import SideEffects
from app.services.tokens import (
    issue_reset_token,
    issue_verification_token,
    redeem_reset_token,
    redeem_verification_token,
)

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 100
DELETE_CONFIRMATION = "DELETE"

GENERIC_FORGOT_MESSAGE = "If an account exists for this email, a reset link has been sent."


def lockout_minutes_remaining(user: User) -> int:
    locked_until = clock.as_utc(user.locked_until)
    if locked_until is None:
        return 0
    remaining = (locked_until - clock.utcnow()).total_seconds()
    return math.ceil(remaining / 60) if remaining > 0 else 0


def user_summary(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "email_verified": bool(user.email_verified),
    }


def _weak_password(errors: list[str]) -> ServiceResult:
    return ServiceResult.failure(
        ErrorCode.INVALID_INPUT,
        "Password does not meet the security requirements",
        details=errors,
    )


# ---------------- SIGNUP ----------------
def signup(db: Session, email: str, password: str, name: str | None = None) -> ServiceResult:
    canonical = canonicalize_email(email)
    if not canonical or not password:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Email and password are required")

    if not is_valid_email(canonical):
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Invalid email")

    errors = validate_password_strength(password)
    if errors:
        return _weak_password(errors)

    if db.query(User.id).filter(User.email == canonical).first():
        return ServiceResult.failure(ErrorCode.CONFLICT, "This email is already registered")

    clean_name = name.strip()[:NAME_MAX_LENGTH] if name and name.strip() else None

    user = User(
        email=canonical,
        name=clean_name,
        password_hash=hash_password(password),
        email_verified=False,
        plan=PLAN_START,
    )

    try:
        db.add(user)
        db.flush()
        token = issue_verification_token(db, user.id)
        create_audit_log(
            db=db,
            event_type=AuditEvent.SIGNUP,
            event_description="Account created",
            user_id=user.id,
            auto_commit=False,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        return ServiceResult.failure(ErrorCode.CONFLICT, "This email is already registered")

    try:
        email_service.send_verification_email(user.email, user.name, token.token)
    except email_service.EmailDeliveryError:
        # Signup still succeeds; the user can ask for another link.
        logger.warning("signup_verification_email_failed user_id=%s", user.id)

    logger.info("signup_success user_id=%s", user.id)
    return ServiceResult.success(
        message="Account created. Check your email to activate it.",
        needs_verification=True,
        user=user_summary(user),
    )


# ---------------- LOGIN ----------------
def login(
    db: Session,
    email: str,
    password: str,
    remember_me: bool = False,
    ip_address: str | None = None,
    user_agent: str | None = None,
    side_effects: SideEffects | None = None,
) -> ServiceResult:
    """
    Verify credentials and open a session.

    On success `internal` holds the signed credential and its max age for
    the cookie; the response body never contains it.
    """
    side_effects = side_effects or SideEffects()

    canonical = canonicalize_email(email)
    if not canonical or not password or not is_valid_email(canonical):
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Invalid email or password format")

    user = db.query(User).filter(User.email == canonical).first()
    if user is None:
        burn_password_check(password)
        logger.info("login_failed reason=unknown_email")
        return ServiceResult.failure(ErrorCode.INVALID_CREDENTIALS, "Incorrect email or password")

    now = clock.utcnow()
    locked_until = clock.as_utc(user.locked_until)
    if locked_until is not None and locked_until > now:
        minutes = lockout_minutes_remaining(user)
        logger.info("login_blocked_locked user_id=%s minutes=%s", user.id, minutes)
        return ServiceResult.failure(
            ErrorCode.ACCOUNT_LOCKED,
            "Account temporarily locked after too many failed attempts",
            locked_minutes=minutes,
        )

    if locked_until is not None or user.login_attempts >= config.MAX_LOGIN_ATTEMPTS:
        # lock lapsed
        user.login_attempts = 0
        user.locked_until = None
        db.commit()
        logger.info("account_unlocked user_id=%s", user.id)

    if not verify_password(password, user.password_hash):
        return _register_failed_attempt(db, user, ip_address, user_agent, side_effects)

    if not user.email_verified:
        return ServiceResult.failure(
            ErrorCode.EMAIL_NOT_VERIFIED,
            "Please verify your email before signing in",
            needs_verification=True,
        )

    previous_ip = user.last_login_ip
    session = create_session(db, user, ip_address, user_agent, remember_me)

    user.login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    user.last_login_ip = ip_address
    db.commit()

    credential = create_session_credential(user.id, user.email, session.id, clock.as_utc(session.expires_at))

    logger.info("login_success user_id=%s session_id=%s", user.id, session.id)
    side_effects.audit(
        AuditEvent.LOGIN,
        f"session_id={session.id} remember_me={bool(remember_me)}",
        user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    if previous_ip and ip_address and previous_ip != ip_address:
        side_effects.dispatch(
            "email:new_device_login",
            email_service.send_new_device_login_email,
            user.email,
            user.name,
            ip_address,
            user_agent,
            now,
        )

    effective = get_effective_plan(db, user.id)
    result = ServiceResult.success(
        user=user_summary(user),
        plan=effective.plan,
        is_active=effective.is_active,
        redirect_url="/dashboard" if effective.is_active else "/pricing",
    )
    result.internal["credential"] = credential
    result.internal["max_age"] = int(session_lifetime(remember_me).total_seconds())
    return result


def _register_failed_attempt(
    db: Session,
    user: User,
    ip_address: str | None,
    user_agent: str | None,
    side_effects: SideEffects,
) -> ServiceResult:
    attempts = (user.login_attempts or 0) + 1
    user.login_attempts = attempts

    if attempts >= config.MAX_LOGIN_ATTEMPTS:
        user.locked_until = clock.utcnow() + timedelta(minutes=config.LOCKOUT_MINUTES)
        db.commit()

        logger.warning("account_locked user_id=%s attempts=%s", user.id, attempts)
        side_effects.audit(
            AuditEvent.ACCOUNT_LOCKED,
            f"Locked after {attempts} failed attempts",
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        side_effects.dispatch(
            "email:account_locked",
            email_service.send_account_locked_email,
            user.email,
            user.name,
            config.LOCKOUT_MINUTES,
        )
        return ServiceResult.failure(
            ErrorCode.ACCOUNT_LOCKED,
            f"Too many failed attempts. Account locked for {config.LOCKOUT_MINUTES} minutes.",
            locked_minutes=config.LOCKOUT_MINUTES,
            attempts_left=0,
        )

    db.commit()
    side_effects.audit(
        AuditEvent.LOGIN_FAILED,
        f"Failed login attempt {attempts}",
        user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return ServiceResult.failure(
        ErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password",
        attempts_left=config.MAX_LOGIN_ATTEMPTS - attempts,
    )


# ---------------- LOGOUT ----------------
def logout(db: Session, credential: str | None, side_effects: SideEffects | None = None) -> ServiceResult:
    """Delete the session behind `credential`. A missing row is not an error."""
    side_effects = side_effects or SideEffects()

    payload = decode_session_credential(credential)
    if payload is None:
        return ServiceResult.success(message="Signed out")

    removed = revoke_session(db, payload["sid"])
    db.commit()

    if removed:
        side_effects.audit(AuditEvent.LOGOUT, f"session_id={payload['sid']}", user_id=payload["sub"])
    return ServiceResult.success(message="Signed out")


# ---------------- PASSWORD CHANGE ----------------
def change_password(
    db: Session,
    user: User,
    current_session_id,
    current_password: str,
    new_password: str,
    side_effects: SideEffects | None = None,
) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    if not current_password or not new_password:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Current and new password are required")

    if not verify_password(current_password, user.password_hash):
        return ServiceResult.failure(ErrorCode.INVALID_CREDENTIALS, "Current password is incorrect")

    errors = validate_password_strength(new_password)
    if errors:
        return _weak_password(errors)

    if verify_password(new_password, user.password_hash):
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "New password must be different from the current one")

    user.password_hash = hash_password(new_password)
    revoked = revoke_user_sessions(db, user.id, keep_session_id=current_session_id)
    db.commit()

    logger.info("password_changed user_id=%s sessions_revoked=%s", user.id, revoked)
    side_effects.audit(AuditEvent.PASSWORD_CHANGE, f"Other sessions revoked: {revoked}", user_id=user.id)
    side_effects.dispatch(
        "email:password_changed",
        email_service.send_password_changed_email,
        user.email,
        user.name,
    )
    return ServiceResult.success(message="Password updated", sessions_revoked=revoked)


# ---------------- PASSWORD RESET ----------------
def forgot_password(db: Session, email: str, side_effects: SideEffects | None = None) -> ServiceResult:
    """Same answer whether or not the account exists."""
    side_effects = side_effects or SideEffects()

    canonical = canonicalize_email(email)
    if not canonical or not is_valid_email(canonical):
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Invalid email")

    user = db.query(User).filter(User.email == canonical).first()
    if user is not None:
        token = issue_reset_token(db, user.id)
        db.commit()

        logger.info("password_reset_requested user_id=%s", user.id)
        side_effects.audit(AuditEvent.PASSWORD_RESET_REQUEST, "Password reset requested", user_id=user.id)
        side_effects.dispatch(
            "email:password_reset",
            email_service.send_password_reset_email,
            user.email,
            user.name,
            token.token,
        )

    return ServiceResult.success(message=GENERIC_FORGOT_MESSAGE)


def reset_password(
    db: Session,
    token: str,
    password: str,
    confirm_password: str,
    side_effects: SideEffects | None = None,
) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    if not token or not password or not confirm_password:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Token and new password are required")

    if password != confirm_password:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Passwords do not match")

    errors = validate_password_strength(password)
    if errors:
        return _weak_password(errors)

    redemption = redeem_reset_token(db, token)
    if not redemption.ok:
        db.rollback()
        return redemption

    user_id = redemption.internal["user_id"]
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            db.rollback()
            return ServiceResult.failure(ErrorCode.NOT_FOUND, "Invalid or unknown token")

        user.password_hash = hash_password(password)
        user.login_attempts = 0
        user.locked_until = None
        revoked = revoke_user_sessions(db, user.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("password_reset_complete user_id=%s sessions_revoked=%s", user.id, revoked)
    side_effects.audit(AuditEvent.PASSWORD_RESET_COMPLETE, f"Sessions revoked: {revoked}", user_id=user.id)
    side_effects.dispatch(
        "email:password_changed",
        email_service.send_password_changed_email,
        user.email,
        user.name,
    )
    return ServiceResult.success(message="Password reset. Sign in with your new password.")


# ---------------- EMAIL VERIFICATION ----------------
def resend_verification(db: Session, email: str) -> ServiceResult:
    """Send a fresh verification link and wait for the mail server to accept it."""
    canonical = canonicalize_email(email)
    if not canonical or not is_valid_email(canonical):
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Invalid email")

    user = db.query(User).filter(User.email == canonical).first()
    if user is None:
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "No account found for this email")

    if user.email_verified:
        return ServiceResult.failure(ErrorCode.EMAIL_ALREADY_VERIFIED, "This email is already verified")

    token = issue_verification_token(db, user.id)
    db.commit()

    try:
        delivered = email_service.send_verification_email(user.email, user.name, token.token)
    except email_service.EmailDeliveryError:
        delivered = False

    if not delivered:
        logger.warning("verification_email_not_delivered user_id=%s", user.id)
        return ServiceResult.failure(
            ErrorCode.EMAIL_DELIVERY_FAILED,
            "We could not send the verification email. Try again later.",
        )

    create_audit_log(
        db=db,
        event_type=AuditEvent.EMAIL_VERIFICATION_SENT,
        event_description="Verification email re-sent",
        user_id=user.id,
    )
    return ServiceResult.success(message="Verification email sent")


def verify_email(db: Session, token: str, side_effects: SideEffects | None = None) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    if not token:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Token is required")

    redemption = redeem_verification_token(db, token)
    if not redemption.ok:
        db.rollback()
        return redemption

    user = db.query(User).filter(User.id == redemption.internal["user_id"]).first()
    if user is None:
        db.rollback()
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "Invalid or unknown token")

    if user.email_verified:
        db.commit()
        return ServiceResult.failure(ErrorCode.EMAIL_ALREADY_VERIFIED, "This email is already verified")

    user.email_verified = True
    user.email_verified_at = clock.utcnow()
    db.commit()

    logger.info("email_verified user_id=%s", user.id)
    side_effects.audit(AuditEvent.EMAIL_VERIFIED, "Email address verified", user_id=user.id)
    side_effects.dispatch("email:welcome", email_service.send_welcome_email, user.email, user.name)
    return ServiceResult.success(message="Email verified. You can sign in now.", user=user_summary(user))


# ---------------- ACCOUNT ----------------
def delete_account(db: Session, user: User, confirmation: str, side_effects: SideEffects | None = None) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    if confirmation != DELETE_CONFIRMATION:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Type DELETE to confirm account deletion")

    user_id = user.id
    # sessions, tokens, subscription, payments and gifts go with the user row
    db.delete(user)
    db.commit()

    logger.info("account_deleted user_id=%s", user_id)
    side_effects.audit(AuditEvent.ACCOUNT_DELETED, "Account permanently deleted", user_id=user_id)
    return ServiceResult.success(message="Your account has been permanently deleted")
