"""
Direct messaging: Chat (one per unordered user pair), ChatRequest (accept/reject
gate before first contact) and Message.

Chat.last_message_* is a display cache of the newest Message, not a source of truth.
"""
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text, UniqueConstraint

from app.db.base import Base


class ChatRequestStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


def member_pair(user_a: str, user_b: str) -> tuple[str, str]:
    """Canonical (sorted) order of a chat's two members."""
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


class Chat(Base):
    __tablename__ = "chats"
    __table_args__ = (
        UniqueConstraint("user1_id", "user2_id", name="uq_chats_member_pair"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user1_id = Column(String, nullable=False, index=True)
    user2_id = Column(String, nullable=False, index=True)
    is_accepted = Column(Boolean, nullable=False, default=False)
    is_support = Column(Boolean, nullable=False, default=False)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_text = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def member_ids(self) -> tuple[str, str]:
        return (self.user1_id, self.user2_id)

    def has_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    def other_member(self, user_id: str) -> str:
        return self.user2_id if self.user1_id == user_id else self.user1_id


class ChatRequest(Base):
    __tablename__ = "chat_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    # No FK: a REJECTED request outlives its deleted chat.
    chat_id = Column(String, unique=True, nullable=False)
    sender_id = Column(String, nullable=False, index=True)
    receiver_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=ChatRequestStatus.PENDING.value, index=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    chat_id = Column(String, nullable=False, index=True)
    sender_id = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
