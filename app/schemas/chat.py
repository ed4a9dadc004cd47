from datetime import datetime

from pydantic import BaseModel, Field

from app.core.config import settings


class ChatCreateIn(BaseModel):
    userId: str = Field(min_length=1)


class MessageIn(BaseModel):
    chatId: str = Field(min_length=1)
    content: str = Field(min_length=1, max_length=settings.chat_message_max_length)


class MemberOut(BaseModel):
    id: str
    username: str | None = None
    avatar: str | None = None


class MessageOut(BaseModel):
    id: str
    chatId: str
    senderId: str
    content: str
    read: bool
    createdAt: datetime


class ChatRequestOut(BaseModel):
    id: str
    chatId: str
    status: str
    createdAt: datetime
    sender: MemberOut | None = None
