"""
User and admin notifications.

Everything here is best-effort from the caller's point of view: the notify_*
helpers commit on their own, and on failure roll back only their own insert,
log, and return None. They must be called after the business change is committed.
"""
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.notification import AdminNotification, Notification
from app.models.user import User

logger = logging.getLogger(__name__)

TYPE_CHAT = "CHAT"
ADMIN_PAYMENT_CREATED = "PAYMENT_CREATED"
ADMIN_PAYMENT_COMPLETED = "PAYMENT_COMPLETED"


class NotificationService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # User notifications
    # ------------------------------------------------------------------

    def notify_chat_message(self, recipient_id: str, sender_id: str, chat_id: str) -> Notification | None:
        """One unread CHAT notification per (recipient, sender, chat); repeats are folded into it."""
        try:
            existing = (
                self.db.query(Notification)
                .filter(
                    Notification.user_id == recipient_id,
                    Notification.type == TYPE_CHAT,
                    Notification.actor_id == sender_id,
                    Notification.entity_id == chat_id,
                    Notification.read.is_(False),
                )
                .first()
            )
            if existing:
                return existing
            sender = self.db.query(User).filter(User.id == sender_id).one_or_none()
            name = sender.username if sender else "Someone"
            notification = Notification(
                user_id=recipient_id,
                type=TYPE_CHAT,
                actor_id=sender_id,
                entity_id=chat_id,
                message=f"{name} sent you a message",
            )
            self.db.add(notification)
            self.db.commit()
            return notification
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("chat_notification_failed", extra={"chat_id": chat_id, "user_id": recipient_id})
            return None

    def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
            .all()
        )

    def unread_count(self, user_id: str) -> int:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.read.is_(False))
            .count()
        )

    def mark_all_read(self, user_id: str) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
        )
        self.db.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Admin notifications
    # ------------------------------------------------------------------

    def _create_admin_notification(
        self,
        type_: str,
        title: str,
        message: str,
        link: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AdminNotification | None:
        try:
            notification = AdminNotification(
                type=type_,
                title=title,
                message=message,
                link=link,
                meta=metadata or {},
            )
            self.db.add(notification)
            self.db.commit()
            return notification
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("admin_notification_failed", extra={"status": type_})
            return None

    def notify_payment_created(self, payment_id: str, user: User, amount: float) -> AdminNotification | None:
        return self._create_admin_notification(
            ADMIN_PAYMENT_CREATED,
            "New Payment Created",
            f"{user.username or 'User'} initiated a payment of ${amount:.2f}",
            link=f"/admin/dashboard/payments?id={payment_id}",
            metadata={"paymentId": payment_id, "userId": user.id, "amount": amount, "username": user.username},
        )

    def notify_payment_completed(self, payment_id: str, user: User | None, amount: float) -> AdminNotification | None:
        username = user.username if user else None
        return self._create_admin_notification(
            ADMIN_PAYMENT_COMPLETED,
            "Payment Completed",
            f"{username or 'User'} completed a payment of ${amount:.2f} (VIP upgrade)",
            link=f"/admin/dashboard/payments?id={payment_id}",
            metadata={"paymentId": payment_id, "userId": user.id if user else None, "amount": amount, "username": username},
        )

    def list_admin(self, unread_only: bool = False, limit: int = 50) -> list[AdminNotification]:
        q = self.db.query(AdminNotification)
        if unread_only:
            q = q.filter(AdminNotification.read.is_(False))
        return q.order_by(AdminNotification.created_at.desc()).limit(limit).all()
