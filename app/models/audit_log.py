import uuid

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from app.db import UUID, Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    # No foreign key: entries outlive the account they describe.
    user_id = Column(UUID(), nullable=True, index=True)
    event_type = Column(String(50), nullable=False)
    event_description = Column(Text, nullable=False)
    ip_address = Column(String(45))
    user_agent = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
