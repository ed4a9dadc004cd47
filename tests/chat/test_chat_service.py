"""Tests for ChatService: pair uniqueness, request workflow, send gating, preview, read state."""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.dml import Update

from app.core.config import settings
from app.models.chat import Chat, ChatRequest, ChatRequestStatus, Message
from app.models.notification import Notification
from app.services.chat.service import ChatService
from app.services.errors import BadRequestError, NotFoundError, StateConflictError


def _accepted_chat(db, svc: ChatService, a, b) -> Chat:
    chat = svc.create_or_get_chat(a.id, b.id)
    req = db.query(ChatRequest).filter(ChatRequest.chat_id == chat.id).one()
    return svc.accept_request(req.id, b.id)


class TestCreateChat:
    def test_creates_chat_and_pending_request(self, db, make_user):
        a, b = make_user(), make_user()

        chat = ChatService(db).create_or_get_chat(a.id, b.id)

        assert chat.is_accepted is False
        assert set(chat.member_ids) == {a.id, b.id}
        req = db.query(ChatRequest).filter(ChatRequest.chat_id == chat.id).one()
        assert req.sender_id == a.id
        assert req.receiver_id == b.id
        assert req.status == ChatRequestStatus.PENDING.value

    def test_one_chat_per_unordered_pair(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)

        first = svc.create_or_get_chat(a.id, b.id)
        second = svc.create_or_get_chat(b.id, a.id)

        assert first.id == second.id
        assert db.query(Chat).count() == 1
        assert db.query(ChatRequest).count() == 1

    def test_self_chat_rejected(self, db, make_user):
        a = make_user()
        with pytest.raises(BadRequestError):
            ChatService(db).create_or_get_chat(a.id, a.id)

    def test_unknown_user(self, db, make_user):
        a = make_user()
        with pytest.raises(NotFoundError):
            ChatService(db).create_or_get_chat(a.id, "ghost")


class TestRequestWorkflow:
    def test_accept(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = svc.create_or_get_chat(a.id, b.id)
        req = db.query(ChatRequest).one()

        accepted = svc.accept_request(req.id, b.id)

        db.refresh(req)
        assert accepted.id == chat.id
        assert accepted.is_accepted is True
        assert req.status == ChatRequestStatus.ACCEPTED.value

    def test_reject_deletes_chat_keeps_request(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = svc.create_or_get_chat(a.id, b.id)
        chat_id = chat.id
        db.add(Message(chat_id=chat_id, sender_id=a.id, content="hi"))
        db.commit()
        req = db.query(ChatRequest).one()

        svc.reject_request(req.id, b.id)

        assert db.query(Chat).filter(Chat.id == chat_id).count() == 0
        assert db.query(Message).filter(Message.chat_id == chat_id).count() == 0
        stored = db.query(ChatRequest).one()
        assert stored.status == ChatRequestStatus.REJECTED.value
        assert svc.list_chats(a.id) == []
        assert svc.list_chats(b.id) == []

    def test_accept_and_reject_are_exclusive(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        svc.create_or_get_chat(a.id, b.id)
        req = db.query(ChatRequest).one()

        svc.accept_request(req.id, b.id)
        with pytest.raises(StateConflictError):
            svc.reject_request(req.id, b.id)
        with pytest.raises(StateConflictError):
            svc.accept_request(req.id, b.id)

        assert db.query(Chat).count() == 1

    def test_only_receiver_can_act(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        svc.create_or_get_chat(a.id, b.id)
        req = db.query(ChatRequest).one()

        with pytest.raises(NotFoundError):
            svc.accept_request(req.id, a.id)
        with pytest.raises(NotFoundError):
            svc.reject_request("missing", b.id)

    def test_pending_requests_list(self, db, make_user):
        a, b, c = make_user(), make_user(), make_user()
        svc = ChatService(db)
        svc.create_or_get_chat(a.id, c.id)
        svc.create_or_get_chat(b.id, c.id)

        pending = svc.list_pending_requests(c.id)

        assert {sender.id for _, sender in pending} == {a.id, b.id}
        assert svc.list_pending_requests(a.id) == []


class TestSendMessage:
    def test_unaccepted_chat_refuses(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = svc.create_or_get_chat(a.id, b.id)

        with pytest.raises(StateConflictError):
            svc.send_message(chat.id, a.id, "hello")
        assert db.query(Message).count() == 0

    def test_non_member_refused(self, db, make_user):
        a, b, c = make_user(), make_user(), make_user()
        svc = ChatService(db)
        chat = _accepted_chat(db, svc, a, b)

        with pytest.raises(NotFoundError):
            svc.send_message(chat.id, c.id, "hello")

    def test_blank_content_refused(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = _accepted_chat(db, svc, a, b)

        with pytest.raises(BadRequestError):
            svc.send_message(chat.id, a.id, "   ")

    def test_send_updates_preview_and_notifies(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = _accepted_chat(db, svc, a, b)
        long_text = "x" * 150

        msg = svc.send_message(chat.id, a.id, long_text)

        db.refresh(chat)
        assert msg.read is False
        assert chat.last_message_text == "x" * settings.chat_preview_length
        assert chat.last_message_at is not None
        notes = db.query(Notification).filter(Notification.user_id == b.id).all()
        assert len(notes) == 1

        svc.send_message(chat.id, a.id, "again")
        assert db.query(Notification).filter(Notification.user_id == b.id).count() == 1

    def test_preview_failure_keeps_message(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = _accepted_chat(db, svc, a, b)
        real_execute = db.execute

        def flaky_execute(stmt, *args, **kwargs):
            if isinstance(stmt, Update) and stmt.table.name == "chats":
                raise SQLAlchemyError("preview write failed")
            return real_execute(stmt, *args, **kwargs)

        with patch.object(db, "execute", side_effect=flaky_execute):
            msg = svc.send_message(chat.id, a.id, "kept")

        assert db.query(Message).filter(Message.id == msg.id).count() == 1
        db.refresh(chat)
        assert chat.last_message_text is None

        rebuilt = svc.refresh_preview(chat.id)
        assert rebuilt.last_message_text == "kept"

    def test_messages_in_creation_order(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = _accepted_chat(db, svc, a, b)
        now = datetime.now(timezone.utc)
        db.add_all([
            Message(chat_id=chat.id, sender_id=a.id, content="second", created_at=now),
            Message(chat_id=chat.id, sender_id=b.id, content="first", created_at=now - timedelta(minutes=1)),
        ])
        db.commit()

        assert [m.content for m in svc.get_messages(chat.id, a.id)] == ["first", "second"]
        with pytest.raises(NotFoundError):
            svc.get_messages(chat.id, make_user().id)


class TestReadState:
    def test_mark_read_only_flips_other_members_messages(self, db, make_user):
        a, b = make_user(), make_user()
        svc = ChatService(db)
        chat = _accepted_chat(db, svc, a, b)
        db.add_all([
            Message(chat_id=chat.id, sender_id=a.id, content="a1"),
            Message(chat_id=chat.id, sender_id=a.id, content="a2"),
            Message(chat_id=chat.id, sender_id=b.id, content="b1"),
        ])
        db.commit()

        flipped = svc.mark_read(chat.id, b.id)

        assert flipped == 2
        by_content = {m.content: m.read for m in db.query(Message).all()}
        assert by_content == {"a1": True, "a2": True, "b1": False}

    def test_unread_count_includes_pending_requests(self, db, make_user):
        a, b, c = make_user(), make_user(), make_user()
        svc = ChatService(db)
        chat = _accepted_chat(db, svc, a, b)
        db.add_all([
            Message(chat_id=chat.id, sender_id=a.id, content="1"),
            Message(chat_id=chat.id, sender_id=a.id, content="2"),
            Message(chat_id=chat.id, sender_id=b.id, content="mine"),
        ])
        db.commit()
        svc.create_or_get_chat(c.id, b.id)

        assert svc.unread_count(b.id) == 3
        svc.mark_read(chat.id, b.id)
        assert svc.unread_count(b.id) == 1


class TestSupportChat:
    def test_support_chat_is_accepted_with_welcome(self, db, make_user):
        user = make_user()
        svc = ChatService(db)

        chat = svc.get_or_create_support_chat(user)

        assert chat.is_accepted is True
        assert chat.is_support is True
        messages = svc.get_messages(chat.id, user.id)
        assert [m.content for m in messages] == [settings.support_welcome_message]
        assert chat.last_message_text == settings.support_welcome_message

        again = svc.get_or_create_support_chat(user)
        assert again.id == chat.id
        svc.send_message(chat.id, user.id, "help")

    def test_list_chats_orders_by_activity(self, db, make_user):
        a, b, c = make_user(), make_user(), make_user()
        svc = ChatService(db)
        older = _accepted_chat(db, svc, a, b)
        newer = _accepted_chat(db, svc, a, c)
        svc.send_message(older.id, a.id, "old")
        svc.send_message(newer.id, a.id, "new")

        listed = svc.list_chats(a.id)

        assert [chat.id for chat, _ in listed] == [newer.id, older.id]
        assert listed[0][1].id == c.id
