"""
Celery beat task: publish posts whose scheduled time has passed.
The API's feed cache lives in another process and expires on its own TTL.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.posts.service import PostService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.workers.tasks.publish_scheduled.publish_scheduled_posts",
    time_limit=60,
    soft_time_limit=55,
)
def publish_scheduled_posts() -> dict:
    db = SessionLocal()
    try:
        published = PostService(db).publish_due()
        return {"ok": True, "published_count": len(published)}
    except Exception:
        logger.exception("publish_scheduled_error")
        db.rollback()
        return {"ok": False}
    finally:
        db.close()
