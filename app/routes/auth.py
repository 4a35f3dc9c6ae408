import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core import config
from app.core.results import ServiceResult
from app.core.security import client_ip, client_user_agent
from app.db import get_db
from app.dependencies.auth import AuthContext, get_current_auth
from app.dependencies.rate_limit import rate_limit
from app.services import auth as auth_service
from app.services.entitlements import get_effective_plan
from app.services.side_effects import SideEffects, get_side_effects

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


# ---------------- COOKIE ----------------
def set_session_cookie(response: JSONResponse, credential: str, max_age: int) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=credential,
        max_age=max_age,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def clear_session_cookie(response: JSONResponse) -> None:
    response.delete_cookie(
        key=config.SESSION_COOKIE_NAME,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


# ---------------- REQUEST MODELS ----------------
class SignupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    password: str
    remember_me: bool = False


class EmailRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str
    password: str
    confirm_password: str


class VerifyEmailRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str


# ---------------- ROUTES ----------------
@router.post("/signup", dependencies=[Depends(rate_limit("signup", 5, 3600))])
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    result = auth_service.signup(db, payload.email, payload.password, payload.name)
    response = result.to_response()
    if result.ok:
        response.status_code = 201
    return response


@router.post("/login", dependencies=[Depends(rate_limit("login", 10, 60))])
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    result = auth_service.login(
        db,
        payload.email,
        payload.password,
        remember_me=payload.remember_me,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
        side_effects=side_effects,
    )
    response = result.to_response()
    if result.ok:
        set_session_cookie(response, result.internal["credential"], result.internal["max_age"])
    return response


@router.post("/logout")
def logout(
    request: Request,
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    try:
        result = auth_service.logout(db, request.cookies.get(config.SESSION_COOKIE_NAME), side_effects)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("logout_session_delete_failed")
        result = ServiceResult.success(message="Signed out")

    response = result.to_response()
    clear_session_cookie(response)
    return response


@router.post("/forgot-password", dependencies=[Depends(rate_limit("forgot-password", 3, 3600))])
def forgot_password(
    payload: EmailRequest,
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return auth_service.forgot_password(db, payload.email, side_effects).to_response()


@router.post("/reset-password", dependencies=[Depends(rate_limit("reset-password", 5, 3600))])
def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    result = auth_service.reset_password(
        db,
        payload.token,
        payload.password,
        payload.confirm_password,
        side_effects,
    )
    response = result.to_response()
    if result.ok:
        clear_session_cookie(response)
    return response


@router.post("/resend-verification", dependencies=[Depends(rate_limit("resend-verification", 3, 3600))])
def resend_verification(payload: EmailRequest, db: Session = Depends(get_db)):
    return auth_service.resend_verification(db, payload.email).to_response()


@router.post("/verify-email", dependencies=[Depends(rate_limit("verify-email", 5, 3600))])
def verify_email(
    payload: VerifyEmailRequest,
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return auth_service.verify_email(db, payload.token, side_effects).to_response()


@router.get("/me")
def me(auth: AuthContext = Depends(get_current_auth), db: Session = Depends(get_db)):
    effective = get_effective_plan(db, auth.user.id)
    return ServiceResult.success(
        user=auth_service.user_summary(auth.user),
        effective_plan=effective.to_dict(),
    ).to_response()
