from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.results import ErrorCode, ServiceResult
from app.core.security import generate_secure_token
from app.models.token import PasswordResetToken, VerificationToken

logger = logging.getLogger(__name__)

# None of these functions commit. Callers commit together with their own writes.


def issue_verification_token(db: Session, user_id) -> VerificationToken:
    db.execute(delete(VerificationToken).where(VerificationToken.user_id == user_id))
    row = VerificationToken(
        token=generate_secure_token(),
        user_id=user_id,
        expires_at=clock.utcnow() + timedelta(hours=config.VERIFICATION_TOKEN_HOURS),
    )
    db.add(row)
    db.flush()
    return row


def issue_reset_token(db: Session, user_id) -> PasswordResetToken:
    db.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user_id))
    row = PasswordResetToken(
        token=generate_secure_token(),
        user_id=user_id,
        expires_at=clock.utcnow() + timedelta(minutes=config.RESET_TOKEN_MINUTES),
    )
    db.add(row)
    db.flush()
    return row


def redeem_reset_token(db: Session, token: str) -> ServiceResult:
    """
    Consume a password-reset token.

    On success the result carries the owning `user_id` in `internal`. The
    used flag is flipped with a conditional UPDATE so that two concurrent
    redemptions cannot both win.
    """
    row = db.query(PasswordResetToken).filter(PasswordResetToken.token == token).first()
    if row is None:
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "Invalid or unknown token")

    if clock.as_utc(row.expires_at) < clock.utcnow():
        db.delete(row)
        db.commit()
        logger.info("reset_token_expired user_id=%s", row.user_id)
        return ServiceResult.failure(ErrorCode.TOKEN_EXPIRED, "This link has expired. Request a new one.")

    if row.used:
        return ServiceResult.failure(ErrorCode.TOKEN_ALREADY_USED, "This link has already been used")

    claimed = db.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.id == row.id, PasswordResetToken.used.is_(False))
        .values(used=True)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        logger.warning("reset_token_race_lost token_id=%s", row.id)
        return ServiceResult.failure(ErrorCode.TOKEN_ALREADY_USED, "This link has already been used")

    result = ServiceResult.success()
    result.internal["user_id"] = row.user_id
    return result


def redeem_verification_token(db: Session, token: str) -> ServiceResult:
    row = db.query(VerificationToken).filter(VerificationToken.token == token).first()
    if row is None:
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "Invalid or unknown token")

    if clock.as_utc(row.expires_at) < clock.utcnow():
        db.delete(row)
        db.commit()
        logger.info("verification_token_expired user_id=%s", row.user_id)
        return ServiceResult.failure(ErrorCode.TOKEN_EXPIRED, "This link has expired. Request a new one.")

    user_id = row.user_id
    consumed = db.execute(
        delete(VerificationToken)
        .where(VerificationToken.id == row.id)
        .execution_options(synchronize_session=False)
    )
    if consumed.rowcount != 1:
        logger.warning("verification_token_race_lost token_id=%s", row.id)
        return ServiceResult.failure(ErrorCode.TOKEN_ALREADY_USED, "This link has already been used")

    db.expunge(row)
    result = ServiceResult.success()
    result.internal["user_id"] = user_id
    return result
