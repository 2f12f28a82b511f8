from celery import Celery
from ..platform.config import settings

celery_app = Celery(
    "assessment_core",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "refund-uncompleted-invites-daily": {
            "task": "app.tasks.assessment_tasks.refund_uncompleted_invites_task",
            "schedule": 86400.0,
        },
        "expire-overdue-attempts-hourly": {
            "task": "app.tasks.assessment_tasks.expire_overdue_attempts_task",
            "schedule": 3600.0,
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["app.tasks"])
