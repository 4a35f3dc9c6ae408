import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db import UUID, Base

STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"
STATUS_EXPIRED = "EXPIRED"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    plan = Column(String, nullable=False)
    status = Column(String, nullable=False, default=STATUS_ACTIVE)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)

    # ACTIVE + auto_renew False + cancelled_at set: cancelled, still entitled until end_date.
    auto_renew = Column(Boolean, nullable=False, default=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="subscription")
