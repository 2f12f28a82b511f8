from .celery_app import celery_app
from .assessment_tasks import expire_overdue_attempts_task, refund_uncompleted_invites_task

__all__ = [
    "celery_app",
    "expire_overdue_attempts_task",
    "refund_uncompleted_invites_task",
]
