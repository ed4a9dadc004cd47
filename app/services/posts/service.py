"""
Post feed and scheduled publication.

PostFeed reads published posts through its own TTLCache; PostService.publish_due
flips drafts whose scheduled time has passed. Publishing changes what the feed
should show, so callers in the API process invalidate the feed afterwards.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.post import Post
from app.services.cache import TTLCache
from app.utils.metrics import feed_cache_requests_total, scheduled_posts_published_total

logger = logging.getLogger(__name__)

FEED_CACHE_PREFIX = "posts:"
MAX_PAGE_SIZE = 50


class PostService:
    def __init__(self, db: Session):
        self.db = db

    def publish_due(self, now: datetime | None = None) -> list[dict[str, Any]]:
        """
        Publish every unpublished post with scheduled_for <= now.
        Safe to run concurrently: a second run finds nothing left to flip.
        """
        now = now or datetime.now(timezone.utc)
        due = (
            self.db.query(Post.id, Post.title, Post.scheduled_for)
            .filter(Post.published.is_(False), Post.scheduled_for <= now)
            .all()
        )
        if not due:
            logger.info("scheduled_posts_none_due", extra={"post_count": 0})
            return []

        res = self.db.execute(
            update(Post)
            .where(
                Post.id.in_([row.id for row in due]),
                Post.published.is_(False),
            )
            .values(published=True)
        )
        self.db.commit()
        scheduled_posts_published_total.inc(res.rowcount)
        logger.info("scheduled_posts_published", extra={"post_count": res.rowcount})
        return [
            {"id": row.id, "title": row.title, "scheduledFor": row.scheduled_for}
            for row in due
        ]


def _serialize(post: Post) -> dict[str, Any]:
    return {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "description": post.description,
        "thumbnail": post.thumbnail,
        "isVip": post.is_vip_only,
        "views": post.views,
        "createdAt": post.created_at,
    }


class PostFeed:
    """Published-post listing. Holds the only cache of feed pages."""

    def __init__(self, cache: TTLCache | None = None):
        self.cache = cache or TTLCache(
            max_size=settings.feed_cache_max_size,
            default_ttl=settings.feed_cache_ttl,
        )

    @staticmethod
    def cache_key(sort: str, filter_: str | None, page: int, limit: int) -> str:
        return f"{FEED_CACHE_PREFIX}{sort}:{filter_}:{page}:{limit}"

    def list(
        self,
        db: Session,
        sort: str = "latest",
        filter_: str | None = None,
        page: int = 1,
        limit: int = 30,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        key = self.cache_key(sort, filter_, page, limit)

        cached = self.cache.get(key)
        if cached is not None:
            feed_cache_requests_total.labels(result="hit").inc()
            return cached
        feed_cache_requests_total.labels(result="miss").inc()

        now = now or datetime.now(timezone.utc)
        q = db.query(Post).filter(
            Post.published.is_(True),
            or_(Post.scheduled_for.is_(None), Post.scheduled_for <= now),
        )
        if filter_ == "vip":
            q = q.filter(Post.is_vip_only.is_(True))
        elif filter_ == "free":
            q = q.filter(Post.is_vip_only.is_(False))

        if sort in ("popular", "views") or filter_ == "views":
            q = q.order_by(Post.views.desc(), Post.created_at.desc())
        else:
            q = q.order_by(Post.created_at.desc())

        total = q.count()
        posts = q.offset((page - 1) * limit).limit(limit).all()
        total_pages = math.ceil(total / limit) if total else 0
        result = {
            "posts": [_serialize(p) for p in posts],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                "totalPosts": total,
                "hasMore": page < total_pages,
            },
        }
        self.cache.set(key, result)
        return result

    def invalidate(self) -> int:
        return self.cache.invalidate_prefix(FEED_CACHE_PREFIX)

    def cleanup(self) -> int:
        return self.cache.cleanup()
