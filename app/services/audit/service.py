from typing import Any

from sqlalchemy.orm import Session

from app.models.audit_log import ActivityLog


class AuditService:
    """Activity log writer. Flushes only: the entry commits together with the change it describes."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str | None,
        user_id: str | None = None,
        username: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ActivityLog:
        entry = ActivityLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            username=username,
            details=details or {},
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_recent(
        self,
        action: str | None = None,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> list[ActivityLog]:
        q = self.db.query(ActivityLog)
        if action:
            q = q.filter(ActivityLog.action == action)
        if entity_id:
            q = q.filter(ActivityLog.entity_id == entity_id)
        return q.order_by(ActivityLog.created_at.desc()).limit(limit).all()
