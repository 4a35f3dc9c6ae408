import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from app.db import UUID, Base

DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    code = Column(String(64), unique=True, nullable=False)
    description = Column(Text)

    discount_type = Column(String(16), nullable=False)
    # Percentage points for PERCENTAGE, cents for FIXED.
    discount_value = Column(Integer, nullable=False)
    min_purchase = Column(Integer, nullable=True)

    valid_from = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    valid_until = Column(DateTime(timezone=True), nullable=True)

    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0, server_default="0")

    # Empty list means every plan is eligible.
    valid_plans = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, nullable=False, default=True, server_default="true")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
