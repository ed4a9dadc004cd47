from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text

from app.db.base import Base, JSONType


class Notification(Base):
    """User-facing notification (new chat message, ...)."""

    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)        # CHAT
    actor_id = Column(String, nullable=True)
    entity_id = Column(String, nullable=True)    # chat id for CHAT
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))


class AdminNotification(Base):
    __tablename__ = "admin_notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    type = Column(String, nullable=False)        # PAYMENT_CREATED / PAYMENT_COMPLETED
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)
    admin_id = Column(String, nullable=True)     # null = visible to all admins
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
