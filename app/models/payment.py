import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db import UUID, Base

PAYMENT_PENDING = "PENDING"
PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_FAILED = "FAILED"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    gateway_id = Column(String(128), unique=True, nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="BRL")
    method = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=PAYMENT_PENDING)
    gateway_status = Column(String(32), nullable=True)

    # Written once at checkout. Confirmation activates this plan and nothing else.
    target_plan = Column(String, nullable=False)

    # Cleared when the attempt fails, so only live attempts hold a key.
    idempotency_key = Column(String(64), unique=True, nullable=True)
    coupon_id = Column(UUID(), ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)
    subscription_id = Column(UUID(), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)

    description = Column(Text)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    user = relationship("User", back_populates="payments")
