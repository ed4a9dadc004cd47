from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base


class Post(Base):
    __tablename__ = "posts"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    title = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail = Column(String, nullable=True)
    is_vip_only = Column(Boolean, nullable=False, default=False)
    published = Column(Boolean, nullable=False, default=True, index=True)
    # Publication time for drafts; picked up by the publish-scheduled job
    scheduled_for = Column(DateTime(timezone=True), nullable=True, index=True)
    views = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
