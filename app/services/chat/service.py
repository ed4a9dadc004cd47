"""
ChatService: direct messages between two users.

A chat starts unaccepted with a PENDING ChatRequest addressed to the other
member; messages flow only after the receiver accepts. Rejecting deletes the
chat and its messages, the request row stays as the record.

Chat.last_message_at / last_message_text are a preview cache written after the
message itself is committed; refresh_preview() rebuilds them from Message.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.chat import Chat, ChatRequest, ChatRequestStatus, Message, member_pair
from app.models.user import User
from app.services.errors import BadRequestError, NotFoundError, StateConflictError
from app.services.notifications.service import NotificationService
from app.services.users.service import UserService
from app.utils.metrics import chat_messages_sent_total, chat_requests_total

logger = logging.getLogger(__name__)


def preview_text(content: str) -> str:
    return content[: settings.chat_preview_length]


class ChatService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_chat(self, chat_id: str) -> Chat | None:
        return self.db.query(Chat).filter(Chat.id == chat_id).one_or_none()

    def get_chat_for_member(self, chat_id: str, user_id: str) -> Chat:
        """Not-found covers non-members too."""
        chat = self.get_chat(chat_id)
        if chat is None or not chat.has_member(user_id):
            raise NotFoundError("Chat not found")
        return chat

    def find_chat_between(self, user_a: str, user_b: str) -> Chat | None:
        u1, u2 = member_pair(user_a, user_b)
        return (
            self.db.query(Chat)
            .filter(Chat.user1_id == u1, Chat.user2_id == u2)
            .one_or_none()
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_or_get_chat(self, actor_id: str, other_id: str) -> Chat:
        """Existing chat for the pair, or a new unaccepted chat plus a PENDING request to other_id."""
        if actor_id == other_id:
            raise BadRequestError("Cannot chat with yourself")
        if UserService(self.db).get(other_id) is None:
            raise NotFoundError("User not found")

        existing = self.find_chat_between(actor_id, other_id)
        if existing:
            return existing

        u1, u2 = member_pair(actor_id, other_id)
        chat = Chat(user1_id=u1, user2_id=u2, is_accepted=False)
        self.db.add(chat)
        try:
            self.db.flush()
            self.db.add(ChatRequest(
                chat_id=chat.id,
                sender_id=actor_id,
                receiver_id=other_id,
                status=ChatRequestStatus.PENDING.value,
            ))
            self.db.commit()
        except IntegrityError:
            # Both users opened the chat at the same time; the other insert won
            self.db.rollback()
            existing = self.find_chat_between(actor_id, other_id)
            if existing is None:
                raise
            return existing
        self.db.refresh(chat)
        chat_requests_total.labels(status=ChatRequestStatus.PENDING.value).inc()
        logger.info("chat_request_created", extra={"chat_id": chat.id, "user_id": actor_id})
        return chat

    def get_or_create_support_chat(self, user: User) -> Chat:
        support = UserService(self.db).get_or_create_support_user()
        if support.id == user.id:
            raise BadRequestError("Cannot chat with yourself")

        existing = self.find_chat_between(user.id, support.id)
        if existing:
            if not existing.is_accepted or not existing.is_support:
                existing.is_accepted = True
                existing.is_support = True
                self.db.commit()
            return existing

        u1, u2 = member_pair(user.id, support.id)
        now = datetime.now(timezone.utc)
        welcome = settings.support_welcome_message
        chat = Chat(
            user1_id=u1,
            user2_id=u2,
            is_accepted=True,
            is_support=True,
            last_message_at=now,
            last_message_text=preview_text(welcome),
        )
        self.db.add(chat)
        try:
            self.db.flush()
            self.db.add(Message(chat_id=chat.id, sender_id=support.id, content=welcome, created_at=now))
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_chat_between(user.id, support.id)
            if existing is None:
                raise
            return existing
        self.db.refresh(chat)
        logger.info("support_chat_created", extra={"chat_id": chat.id, "user_id": user.id})
        return chat

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _get_request_for_receiver(self, request_id: str, user_id: str) -> ChatRequest:
        req = self.db.query(ChatRequest).filter(ChatRequest.id == request_id).one_or_none()
        if req is None or req.receiver_id != user_id:
            raise NotFoundError("Chat request not found")
        return req

    def _resolve_request(self, req: ChatRequest, status: ChatRequestStatus) -> None:
        """PENDING -> status, or StateConflictError if someone else resolved it first."""
        res = self.db.execute(
            update(ChatRequest)
            .where(ChatRequest.id == req.id, ChatRequest.status == ChatRequestStatus.PENDING.value)
            .values(status=status.value, updated_at=datetime.now(timezone.utc))
        )
        if res.rowcount == 0:
            self.db.rollback()
            raise StateConflictError("Chat request already handled")

    def accept_request(self, request_id: str, user_id: str) -> Chat:
        req = self._get_request_for_receiver(request_id, user_id)
        if req.status != ChatRequestStatus.PENDING.value:
            raise StateConflictError("Chat request already handled")
        self._resolve_request(req, ChatRequestStatus.ACCEPTED)
        self.db.execute(
            update(Chat).where(Chat.id == req.chat_id).values(is_accepted=True)
        )
        self.db.commit()
        chat_requests_total.labels(status=ChatRequestStatus.ACCEPTED.value).inc()
        logger.info("chat_request_accepted", extra={"chat_id": req.chat_id, "user_id": user_id})
        chat = self.get_chat(req.chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        return chat

    def reject_request(self, request_id: str, user_id: str) -> ChatRequest:
        req = self._get_request_for_receiver(request_id, user_id)
        if req.status != ChatRequestStatus.PENDING.value:
            raise StateConflictError("Chat request already handled")
        chat_id = req.chat_id
        self._resolve_request(req, ChatRequestStatus.REJECTED)
        self.db.execute(delete(Message).where(Message.chat_id == chat_id))
        self.db.execute(delete(Chat).where(Chat.id == chat_id))
        self.db.commit()
        self.db.refresh(req)
        chat_requests_total.labels(status=ChatRequestStatus.REJECTED.value).inc()
        logger.info("chat_request_rejected", extra={"chat_id": chat_id, "user_id": user_id})
        return req

    def list_pending_requests(self, user_id: str) -> list[tuple[ChatRequest, User | None]]:
        """Received PENDING requests, newest first, each with its sender."""
        requests = (
            self.db.query(ChatRequest)
            .filter(
                ChatRequest.receiver_id == user_id,
                ChatRequest.status == ChatRequestStatus.PENDING.value,
            )
            .order_by(ChatRequest.created_at.desc())
            .all()
        )
        senders = UserService(self.db).get_many({r.sender_id for r in requests})
        return [(r, senders.get(r.sender_id)) for r in requests]

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_chats(self, user_id: str) -> list[tuple[Chat, User | None]]:
        """Accepted chats, most recently active first, each with the other member."""
        chats = (
            self.db.query(Chat)
            .filter(
                Chat.is_accepted.is_(True),
                or_(Chat.user1_id == user_id, Chat.user2_id == user_id),
            )
            .order_by(Chat.last_message_at.desc().nulls_last(), Chat.updated_at.desc())
            .all()
        )
        others = UserService(self.db).get_many({c.other_member(user_id) for c in chats})
        return [(c, others.get(c.other_member(user_id))) for c in chats]

    def get_messages(self, chat_id: str, user_id: str) -> list[Message]:
        self.get_chat_for_member(chat_id, user_id)
        return (
            self.db.query(Message)
            .filter(Message.chat_id == chat_id)
            .order_by(Message.created_at.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_message(self, chat_id: str, sender_id: str, content: str) -> Message:
        """
        Persist a message in an accepted chat.
        The message is committed before the preview; a failed preview write
        is logged and leaves the message in place.
        """
        if not content or not content.strip():
            raise BadRequestError("Message content is required")
        chat = self.get_chat_for_member(chat_id, sender_id)
        if not chat.is_accepted:
            raise StateConflictError("Chat request not accepted yet")

        message = Message(chat_id=chat.id, sender_id=sender_id, content=content)
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        chat_messages_sent_total.inc()
        recipient_id = chat.other_member(sender_id)

        try:
            self.db.execute(
                update(Chat)
                .where(Chat.id == chat.id)
                .values(
                    last_message_at=message.created_at,
                    last_message_text=preview_text(content),
                )
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("chat_preview_update_failed", extra={"chat_id": chat_id})

        NotificationService(self.db).notify_chat_message(recipient_id, sender_id, chat_id)
        logger.info("chat_message_sent", extra={"chat_id": chat_id, "user_id": sender_id})
        return message

    def refresh_preview(self, chat_id: str) -> Chat:
        """Rebuild the preview from the newest message (or clear it if there is none)."""
        chat = self.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("Chat not found")
        newest = (
            self.db.query(Message)
            .filter(Message.chat_id == chat_id)
            .order_by(Message.created_at.desc())
            .first()
        )
        chat.last_message_at = newest.created_at if newest else None
        chat.last_message_text = preview_text(newest.content) if newest else None
        self.db.commit()
        self.db.refresh(chat)
        return chat

    def mark_read(self, chat_id: str, user_id: str) -> int:
        """Flip unread messages from the other member; own messages are untouched."""
        self.get_chat_for_member(chat_id, user_id)
        res = self.db.execute(
            update(Message)
            .where(
                Message.chat_id == chat_id,
                Message.sender_id != user_id,
                Message.read.is_(False),
            )
            .values(read=True)
        )
        self.db.commit()
        return res.rowcount

    def unread_count(self, user_id: str) -> int:
        """Pending requests received + unread messages from others across the user's chats."""
        pending = (
            self.db.query(ChatRequest)
            .filter(
                ChatRequest.receiver_id == user_id,
                ChatRequest.status == ChatRequestStatus.PENDING.value,
            )
            .count()
        )
        chat_ids = self.db.query(Chat.id).filter(
            or_(Chat.user1_id == user_id, Chat.user2_id == user_id)
        )
        unread = (
            self.db.query(Message)
            .filter(
                Message.chat_id.in_(chat_ids.scalar_subquery()),
                Message.sender_id != user_id,
                Message.read.is_(False),
            )
            .count()
        )
        return pending + unread
