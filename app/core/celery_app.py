"""
Celery application: broker and result backend from settings.
Tasks are in app.workers.tasks (scheduled post publication).
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.workers.tasks.publish_scheduled",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_time_limit=300,
    result_expires=86400,
    beat_schedule={
        "publish-scheduled-posts": {
            "task": "app.workers.tasks.publish_scheduled.publish_scheduled_posts",
            "schedule": crontab(minute="*/5"),
        },
    },
)
