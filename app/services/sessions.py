from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.security import generate_secure_token
from app.models.session import UserSession
from app.models.user import User

logger = logging.getLogger(__name__)


def session_lifetime(remember_me: bool) -> timedelta:
    days = config.SESSION_DURATION_DAYS
    if remember_me:
        days *= config.REMEMBER_ME_MULTIPLIER
    return timedelta(days=days)


def create_session(
    db: Session,
    user: User,
    ip_address: str | None,
    user_agent: str | None,
    remember_me: bool = False,
) -> UserSession:
    row = UserSession(
        user_id=user.id,
        token=generate_secure_token(),
        expires_at=clock.utcnow() + session_lifetime(remember_me),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(row)
    db.flush()
    return row


def get_active_session(db: Session, session_id, user_id) -> UserSession | None:
    """Return the session if it exists, belongs to `user_id` and has not expired."""
    row = db.query(UserSession).filter(UserSession.id == session_id).first()
    if row is None:
        return None

    if row.user_id != user_id:
        logger.warning("session_owner_mismatch session_id=%s", session_id)
        return None

    if clock.as_utc(row.expires_at) <= clock.utcnow():
        db.delete(row)
        db.commit()
        return None

    return row


def revoke_session(db: Session, session_id) -> int:
    result = db.execute(delete(UserSession).where(UserSession.id == session_id))
    return result.rowcount or 0


def revoke_user_sessions(db: Session, user_id, keep_session_id=None) -> int:
    stmt = delete(UserSession).where(UserSession.user_id == user_id)
    if keep_session_id is not None:
        stmt = stmt.where(UserSession.id != keep_session_id)
    result = db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0
