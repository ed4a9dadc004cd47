from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, String

from app.db.base import Base, JSONType


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    action = Column(String, nullable=False, index=True)  # PAYMENT_CREATE / PAYMENT_COMPLETE / ...
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=True, index=True)
    username = Column(String, nullable=True)
    details = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
