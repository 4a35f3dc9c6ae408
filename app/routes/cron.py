import hmac
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core import clock, config
from app.core.results import ErrorCode, ServiceResult
from app.db import get_db
from app.services.subscription import expire_overdue_subscriptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


def _authorized(request: Request) -> bool:
    auth = request.headers.get("authorization", "")
    if not auth.lower().startswith("bearer "):
        return False
    supplied = auth.split(" ", 1)[1].strip()
    return hmac.compare_digest(supplied.encode("utf-8"), config.CRON_SECRET.encode("utf-8"))


@router.get("/expire-subscriptions")
def expire_subscriptions(request: Request, db: Session = Depends(get_db)):
    if not config.CRON_SECRET:
        logger.error("cron_not_configured job=expire_subscriptions")
        return ServiceResult.failure(ErrorCode.UNEXPECTED, "Cron is not configured").to_response()

    if not _authorized(request):
        logger.warning("cron_unauthorized job=expire_subscriptions")
        return ServiceResult.failure(ErrorCode.UNAUTHENTICATED, "Unauthorized").to_response()

    expired = expire_overdue_subscriptions(db)
    return ServiceResult.success(expired=expired, timestamp=clock.utcnow()).to_response()
