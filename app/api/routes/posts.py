"""
Post feed and the scheduled-publication cron hook.

The feed cache belongs to this router's PostFeed; the cron hook invalidates it
after publishing. Beat runs the same job in the worker (see publish_scheduled).
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.auth.session import verify_cron_secret
from app.services.posts.service import PostFeed, PostService

router = APIRouter(tags=["posts"])

feed = PostFeed()


@router.get("/posts")
def list_posts(
    sort: str = Query("latest"),
    filter: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(30, ge=1),
    db: Session = Depends(get_db),
):
    return feed.list(db, sort=sort, filter_=filter, page=page, limit=limit)


@router.api_route(
    "/cron/publish-scheduled",
    methods=["GET", "POST"],
    dependencies=[Depends(verify_cron_secret)],
)
def publish_scheduled(db: Session = Depends(get_db)):
    now = datetime.now(timezone.utc)
    published = PostService(db).publish_due(now)
    feed.cleanup()
    if published:
        feed.invalidate()
    return {
        "message": "Scheduled posts published successfully" if published else "No posts to publish",
        "publishedCount": len(published),
        "posts": published,
        "timestamp": now,
    }
