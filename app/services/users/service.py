from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.user import User


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> User | None:
        return self.db.query(User).filter(User.id == user_id).one_or_none()

    def get_many(self, user_ids: list[str] | set[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        users = self.db.query(User).filter(User.id.in_(list(user_ids))).all()
        return {u.id: u for u in users}

    def grant_vip(self, user_id: str) -> bool:
        """
        Idempotent lifetime VIP grant: a set, not a toggle or counter.
        Returns True if this call flipped is_vip (False when already VIP or user missing).
        vip_until is always cleared: VIP has no expiry.
        """
        result = self.db.execute(
            update(User)
            .where(User.id == user_id, User.is_vip.is_(False))
            .values(is_vip=True, vip_until=None)
        )
        self.db.flush()
        return result.rowcount > 0

    def get_or_create_support_user(self) -> User:
        user = self.db.query(User).filter(User.email == settings.support_email).one_or_none()
        if user:
            return user
        user = User(
            email=settings.support_email,
            username=settings.support_username,
            name="Customer Support",
            is_verified=True,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # Created concurrently by another request
            self.db.rollback()
            return self.db.query(User).filter(User.email == settings.support_email).one()
        self.db.refresh(user)
        return user
