# Scheduler-triggered maintenance endpoints (used when celery beat is disabled).
from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from ...components.attempts.service import expire_overdue_attempts
from ...components.credits.refund_sweep import refund_uncompleted_invites
from ...platform.config import settings
from ...platform.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    expected = (settings.CRON_SECRET or "").strip()
    if not expected:
        raise HTTPException(status_code=403, detail="Cron endpoints are disabled")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.post("/refund-uncompleted", dependencies=[Depends(verify_cron_secret)])
def run_refund_sweep(db: Session = Depends(get_db)):
    summary = refund_uncompleted_invites(db)
    return {"success": True, **summary}


@router.post("/expire-attempts", dependencies=[Depends(verify_cron_secret)])
def run_attempt_expiry(db: Session = Depends(get_db)):
    expired = expire_overdue_attempts(db)
    return {"success": True, "expired": expired}
