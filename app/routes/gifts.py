from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.features import Feature
from app.core.results import ErrorCode, ServiceResult
from app.db import get_db
from app.dependencies.access import require_feature
from app.dependencies.auth import get_current_user
from app.dependencies.rate_limit import rate_limit
from app.models.gift import GiftMedia
from app.models.user import User
from app.services import gifts as gift_service
from app.services.side_effects import SideEffects, get_side_effects

router = APIRouter(prefix="/gifts", tags=["Gifts"])


class CreateGiftRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    message: Optional[str] = None


class AddMediaRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    caption: Optional[str] = None


@router.post("", dependencies=[Depends(rate_limit("create-gift", 20, 3600))])
def create_gift(
    payload: CreateGiftRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    result = gift_service.create_gift(db, current_user, payload.title, payload.message, side_effects)
    response = result.to_response()
    if result.ok:
        response.status_code = 201
    return response


@router.post("/{gift_id}/photos", dependencies=[Depends(rate_limit("add-photo", 30, 60))])
def add_photo(
    gift_id: str,
    payload: AddMediaRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return gift_service.add_photo(db, current_user, gift_id, payload.url, payload.caption, side_effects).to_response()


@router.post("/{gift_id}/music", dependencies=[Depends(rate_limit("add-music", 10, 60))])
def add_music(
    gift_id: str,
    payload: AddMediaRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    side_effects: SideEffects = Depends(get_side_effects),
):
    return gift_service.add_music(db, current_user, gift_id, payload.url, payload.caption, side_effects).to_response()


@router.get("/{gift_id}/analytics", dependencies=[Depends(require_feature(Feature.ANALYTICS))])
def gift_analytics(
    gift_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    gift = gift_service.get_owned_gift(db, current_user, gift_id)
    if gift is None:
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "Gift not found").to_response()

    counts = dict(
        db.query(GiftMedia.kind, func.count(GiftMedia.id))
        .filter(GiftMedia.gift_id == gift.id)
        .group_by(GiftMedia.kind)
        .all()
    )
    return ServiceResult.success(
        gift_id=gift.id,
        slug=gift.slug,
        media_counts=counts,
        created_at=gift.created_at,
    ).to_response()
