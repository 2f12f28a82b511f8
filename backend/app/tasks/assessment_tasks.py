import logging
from .celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task
def refund_uncompleted_invites_task():
    """Periodic task: release credit reservations for invites nobody completed."""
    from ..components.credits.refund_sweep import refund_uncompleted_invites
    from ..platform.database import SessionLocal

    logger.info("Running refund sweep")
    db = SessionLocal()
    try:
        return refund_uncompleted_invites(db)
    finally:
        db.close()


@celery_app.task
def expire_overdue_attempts_task():
    """Periodic task: mark IN_PROGRESS attempts past their deadline as EXPIRED."""
    from ..components.attempts.service import expire_overdue_attempts
    from ..platform.database import SessionLocal

    db = SessionLocal()
    try:
        expired = expire_overdue_attempts(db)
        return {"expired": expired}
    finally:
        db.close()
