from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.services.auth.session import get_current_user
from app.services.notifications.service import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = NotificationService(db).list_for_user(user.id, limit=limit)
    return {
        "notifications": [
            {
                "id": n.id,
                "type": n.type,
                "actorId": n.actor_id,
                "entityId": n.entity_id,
                "message": n.message,
                "read": n.read,
                "createdAt": n.created_at,
            }
            for n in items
        ]
    }


@router.get("/unread-count")
def unread_count(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"count": NotificationService(db).unread_count(user.id)}


@router.post("/read-all")
def read_all(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"success": True, "count": NotificationService(db).mark_all_read(user.id)}
