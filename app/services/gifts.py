from __future__ import annotations

import logging
import re
import secrets
import uuid
from urllib.parse import urlparse

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.results import ErrorCode, ServiceResult
from app.models.gift import MEDIA_MUSIC, MEDIA_PHOTO, Gift, GiftMedia
from app.models.user import User
from app.services.audit_logger import AuditEvent
from app.services.entitlements import (
    QuotaDecision,
    can_user_add_music,
    can_user_add_photo,
    can_user_create_gift,
)
from app.services.side_effects import SideEffects

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def _denied(decision: QuotaDecision, what: str) -> ServiceResult:
    if decision.requires_subscription:
        return ServiceResult.failure(
            ErrorCode.REQUIRES_SUBSCRIPTION,
            "An active subscription is required",
            quota=decision.to_dict(),
        )
    if not decision.feature_available:
        return ServiceResult.failure(
            ErrorCode.FEATURE_UNAVAILABLE,
            f"Your plan does not include {what}",
            quota=decision.to_dict(),
        )
    return ServiceResult.failure(
        ErrorCode.QUOTA_EXCEEDED,
        f"You reached the {what} limit of your plan",
        quota=decision.to_dict(),
    )


def _is_https_url(url: str | None) -> bool:
    if not url:
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme == "https" and bool(parsed.netloc)


def _build_slug(title: str) -> str:
    base = _SLUG_STRIP.sub("-", title.lower()).strip("-")[:40] or "gift"
    return f"{base}-{secrets.token_hex(4)}"


def get_owned_gift(db: Session, user: User, gift_id) -> Gift | None:
    try:
        parsed = uuid.UUID(str(gift_id))
    except ValueError:
        return None
    return db.query(Gift).filter(Gift.id == parsed, Gift.user_id == user.id).first()


def _count_media(db: Session, gift_id, kind: str) -> int:
    return (
        db.query(func.count(GiftMedia.id))
        .filter(GiftMedia.gift_id == gift_id, GiftMedia.kind == kind)
        .scalar()
        or 0
    )


def create_gift(
    db: Session,
    user: User,
    title: str,
    message: str | None = None,
    side_effects: SideEffects | None = None,
) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    clean_title = (title or "").strip()
    if not clean_title or len(clean_title) > TITLE_MAX_LENGTH:
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Title is required (max 200 characters)")

    current = db.query(func.count(Gift.id)).filter(Gift.user_id == user.id).scalar() or 0
    decision = can_user_create_gift(db, user.id, current)
    if not decision.allowed:
        return _denied(decision, "gifts")

    gift = Gift(user_id=user.id, title=clean_title, message=message, slug=_build_slug(clean_title))
    db.add(gift)
    db.commit()

    logger.info("gift_created gift_id=%s user_id=%s", gift.id, user.id)
    side_effects.audit(AuditEvent.CREATE_GIFT, f"gift_id={gift.id}", user_id=user.id)
    return ServiceResult.success(
        gift={"id": gift.id, "title": gift.title, "slug": gift.slug},
        quota=decision.to_dict(),
    )


def add_media(
    db: Session,
    user: User,
    gift_id,
    kind: str,
    url: str,
    caption: str | None = None,
    side_effects: SideEffects | None = None,
) -> ServiceResult:
    side_effects = side_effects or SideEffects()

    if not _is_https_url(url):
        return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Invalid URL. Only HTTPS URLs are accepted.")

    gift = get_owned_gift(db, user, gift_id)
    if gift is None:
        return ServiceResult.failure(ErrorCode.NOT_FOUND, "Gift not found")

    current = _count_media(db, gift.id, kind)
    if kind == MEDIA_MUSIC:
        decision = can_user_add_music(db, user.id, current)
        what, event = "music", AuditEvent.ADD_MUSIC
    else:
        decision = can_user_add_photo(db, user.id, current)
        what, event = "photos", AuditEvent.ADD_PHOTO

    if not decision.allowed:
        return _denied(decision, what)

    media = GiftMedia(gift_id=gift.id, kind=kind, url=url.strip(), caption=caption, position=current)
    db.add(media)
    db.commit()

    side_effects.audit(event, f"gift_id={gift.id} media_id={media.id}", user_id=user.id)
    remaining = decision.remaining
    if remaining is not None and remaining > 0:
        remaining -= 1
    return ServiceResult.success(
        media={"id": media.id, "kind": media.kind, "url": media.url, "position": media.position},
        limit=decision.limit,
        remaining=remaining,
    )


def add_photo(db: Session, user: User, gift_id, url: str, caption: str | None = None, side_effects: SideEffects | None = None) -> ServiceResult:
    return add_media(db, user, gift_id, MEDIA_PHOTO, url, caption, side_effects)


def add_music(db: Session, user: User, gift_id, url: str, caption: str | None = None, side_effects: SideEffects | None = None) -> ServiceResult:
    return add_media(db, user, gift_id, MEDIA_MUSIC, url, caption, side_effects)
