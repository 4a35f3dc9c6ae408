import logging

from app.db import SessionLocal
from app.models import registry  # noqa: F401
from app.services.subscription import expire_overdue_subscriptions

logger = logging.getLogger(__name__)


def main():
    db = SessionLocal()
    try:
        expired = expire_overdue_subscriptions(db)
        logger.info("expire_subscriptions_job_done expired=%s", expired)
        return expired
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s"
    )
    main()
