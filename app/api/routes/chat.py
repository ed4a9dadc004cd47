"""
Chat routes. Static paths (/chat/requests, /chat/support, /chat/unread-count) before /chat/{chat_id}/...
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.chat import Message
from app.models.user import User
from app.schemas.chat import ChatCreateIn, ChatRequestOut, MemberOut, MessageIn, MessageOut
from app.services.auth.session import get_current_user
from app.services.chat.service import ChatService

router = APIRouter(prefix="/chat", tags=["chat"])


def _message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id,
        chatId=m.chat_id,
        senderId=m.sender_id,
        content=m.content,
        read=m.read,
        createdAt=m.created_at,
    )


@router.get("")
def list_chats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    chats = []
    for chat, other in ChatService(db).list_chats(user.id):
        chats.append({
            "id": chat.id,
            "isSupport": chat.is_support,
            "members": [other.public_dict()] if other else [],
            "lastMessage": {
                "content": chat.last_message_text,
                "createdAt": chat.last_message_at or chat.updated_at,
            } if chat.last_message_text else None,
            "updatedAt": chat.updated_at,
        })
    return {"chats": chats}


@router.post("/create")
def create_chat(body: ChatCreateIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    chat = ChatService(db).create_or_get_chat(user.id, body.userId)
    return {"chatId": chat.id, "isAccepted": chat.is_accepted}


@router.get("/support")
def support_chat(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    chat = ChatService(db).get_or_create_support_chat(user)
    return {"chatId": chat.id}


@router.get("/requests")
def pending_requests(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    requests = [
        ChatRequestOut(
            id=req.id,
            chatId=req.chat_id,
            status=req.status,
            createdAt=req.created_at,
            sender=MemberOut(**sender.public_dict()) if sender else None,
        )
        for req, sender in ChatService(db).list_pending_requests(user.id)
    ]
    return {"requests": requests}


@router.post("/requests/{request_id}/accept")
def accept_request(request_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    chat = ChatService(db).accept_request(request_id, user.id)
    return {"success": True, "chatId": chat.id}


@router.post("/requests/{request_id}/reject")
def reject_request(request_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ChatService(db).reject_request(request_id, user.id)
    return {"success": True}


@router.get("/unread-count")
def unread_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": ChatService(db).unread_count(user.id)}


@router.post("/send", response_model=MessageOut)
def send_message(body: MessageIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    message = ChatService(db).send_message(body.chatId, user.id, body.content)
    return _message_out(message)


@router.get("/{chat_id}/messages")
def get_messages(chat_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    messages = ChatService(db).get_messages(chat_id, user.id)
    return {"messages": [_message_out(m) for m in messages]}


@router.post("/{chat_id}/mark-read")
def mark_read(chat_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    count = ChatService(db).mark_read(chat_id, user.id)
    return {"success": True, "count": count}
