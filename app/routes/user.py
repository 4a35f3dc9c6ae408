from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.core.results import ErrorCode, ServiceResult
from app.db import get_db
from app.dependencies.auth import AuthContext, get_current_auth
from app.dependencies.rate_limit import rate_limit
from app.routes.auth import clear_session_cookie
from app.services import auth as auth_service
from app.services.entitlements import get_effective_plan
from app.services.side_effects import SideEffects, get_side_effects

router = APIRouter(prefix="/user", tags=["User"])


class UpdateProfileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_password: str
    new_password: str


class DeleteAccountRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    confirmation: str


@router.get("")
def get_profile(auth: AuthContext = Depends(get_current_auth), db: Session = Depends(get_db)):
    user = auth.user
    effective = get_effective_plan(db, user.id)
    return ServiceResult.success(
        user={
            **auth_service.user_summary(user),
            "plan": user.plan,
            "created_at": user.created_at,
            "last_login_at": user.last_login_at,
        },
        effective_plan=effective.to_dict(),
    ).to_response()


@router.put("")
def update_profile(
    payload: UpdateProfileRequest,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
):
    name = (payload.name or "").strip()
    if len(name) > auth_service.NAME_MAX_LENGTH:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Name is too long").to_response()

    auth.user.name = name or None
    db.commit()
    return ServiceResult.success(user=auth_service.user_summary(auth.user)).to_response()


@router.put("/password", dependencies=[Depends(rate_limit("change-password", 5, 3600))])
def change_password(
    payload: ChangePasswordRequest,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return auth_service.change_password(
        db,
        auth.user,
        auth.session_id,
        payload.current_password,
        payload.new_password,
        side_effects,
    ).to_response()


@router.delete("", dependencies=[Depends(rate_limit("account-delete", 3, 3600))])
def delete_account(
    payload: DeleteAccountRequest,
    auth: AuthContext = Depends(get_current_auth),
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    result = auth_service.delete_account(db, auth.user, payload.confirmation, side_effects)
    response = result.to_response()
    if result.ok:
        clear_session_cookie(response)
    return response
