from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core import config
from app.core.results import ErrorCode, error_body
from app.core.security import decode_session_credential
from app.db import get_db
from app.models.user import User
from app.services.sessions import get_active_session

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    user: User
    session_id: uuid.UUID


def _unauthenticated() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=error_body(ErrorCode.UNAUTHENTICATED, "Sign in to continue"),
    )


def _resolve_auth(request: Request, db: Session) -> Optional[AuthContext]:
    payload = decode_session_credential(request.cookies.get(config.SESSION_COOKIE_NAME))
    if payload is None:
        return None

    # A valid signature is not enough: the session row must still exist.
    session = get_active_session(db, payload["sid"], payload["sub"])
    if session is None:
        return None

    user = db.query(User).filter(User.id == payload["sub"]).first()
    if user is None:
        return None

    request.state.user = user
    return AuthContext(user=user, session_id=session.id)


def get_current_auth(request: Request, db: Session = Depends(get_db)) -> AuthContext:
    auth = _resolve_auth(request, db)
    if auth is None:
        raise _unauthenticated()
    return auth


def get_current_user(auth: AuthContext = Depends(get_current_auth)) -> User:
    return auth.user
