from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text

from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    bio = Column(Text, nullable=True)
    password_hash = Column(String, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)

    # NB: VIP is lifetime. vip_until stays null on every upgrade path;
    # the column is kept for a future expiring tier.
    is_vip = Column(Boolean, nullable=False, default=False)
    vip_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def public_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "avatar": self.avatar}
