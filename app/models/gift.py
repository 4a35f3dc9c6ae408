import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db import UUID, Base

MEDIA_PHOTO = "PHOTO"
MEDIA_MUSIC = "MUSIC"


class Gift(Base):
    __tablename__ = "gifts"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text)
    slug = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="gifts")
    media = relationship("GiftMedia", back_populates="gift", cascade="all, delete-orphan")


class GiftMedia(Base):
    __tablename__ = "gift_media"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    gift_id = Column(UUID(), ForeignKey("gifts.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(16), nullable=False)
    url = Column(Text, nullable=False)
    caption = Column(String(500))
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    gift = relationship("Gift", back_populates="media")
