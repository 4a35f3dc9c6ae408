from __future__ import annotations

import logging
from enum import Enum

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.security import client_ip, client_user_agent
from app.db import SessionLocal
from app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditEvent(str, Enum):
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    LOGOUT = "LOGOUT"
    SIGNUP = "SIGNUP"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    PASSWORD_RESET_COMPLETE = "PASSWORD_RESET_COMPLETE"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    EMAIL_VERIFICATION_SENT = "EMAIL_VERIFICATION_SENT"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CREATE_GIFT = "CREATE_GIFT"
    ADD_PHOTO = "ADD_PHOTO"
    ADD_MUSIC = "ADD_MUSIC"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"


def create_audit_log(
    db: Session,
    event_type: AuditEvent | str,
    event_description: str,
    request: Request | None = None,
    user_id=None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    auto_commit: bool = True,
):
    if request is not None:
        ip_address = ip_address or client_ip(request)
        user_agent = user_agent or client_user_agent(request)

    log = AuditLog(
        user_id=user_id,
        event_type=event_type.value if isinstance(event_type, AuditEvent) else str(event_type),
        event_description=event_description,
        ip_address=ip_address,
        user_agent=user_agent,
    )

    db.add(log)
    if auto_commit:
        db.commit()
    return log


def record_audit_event(
    event_type: AuditEvent | str,
    event_description: str,
    user_id=None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Append an audit entry in its own session.

    Used from background tasks, after the request's transaction has already
    committed, so a failure here never touches the caller's unit of work.
    """
    db = SessionLocal()
    try:
        create_audit_log(
            db=db,
            event_type=event_type,
            event_description=event_description,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
