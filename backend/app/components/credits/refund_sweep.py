"""Periodic release of credit reservations for invites nobody completed."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.attempt import AssessmentAttempt, AttemptStatus
from ...models.credit_ledger import CreditLedgerEntry, LedgerStatus
from ...models.invite import AssessmentInvite, InviteStatus
from ...platform.config import settings
from ...platform.errors import DomainError
from ..attempts.repository import ensure_utc
from .ledger import charge_completion_credits, refund_reserved_credits_in_transaction

logger = logging.getLogger(__name__)


def _invite_is_live(db: Session, invite: AssessmentInvite, now: datetime) -> bool:
    """True while the candidate can still use the invite or is mid-attempt."""
    if invite.status in (InviteStatus.SENT, InviteStatus.STARTED):
        expires_at = ensure_utc(invite.expires_at)
        if expires_at is None or expires_at > now:
            return True
    in_progress = (
        db.query(AssessmentAttempt.id)
        .filter(
            AssessmentAttempt.invite_id == invite.id,
            AssessmentAttempt.status == AttemptStatus.IN_PROGRESS,
        )
        .first()
    )
    return in_progress is not None


def _refund_and_expire(db: Session, entry: CreditLedgerEntry, reason: str) -> bool:
    try:
        refund_reserved_credits_in_transaction(db, entry.invite_id, reason)
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == entry.invite_id).first()
        if invite and invite.status in (InviteStatus.SENT, InviteStatus.STARTED):
            invite.status = InviteStatus.EXPIRED
        db.commit()
        return True
    except DomainError as exc:
        # lost the race to a concurrent charge/refund; nothing left to do
        db.rollback()
        logger.info("Sweep skipped invite_id=%s: %s", entry.invite_id, exc.message)
        return False
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Sweep failed to refund invite_id=%s", entry.invite_id)
        return False


def refund_uncompleted_invites(
    db: Session,
    *,
    now: datetime | None = None,
    grace_days: int | None = None,
) -> dict:
    """Refund RESERVED entries older than the grace period.

    Entries whose invite is still live (unexpired, or with an attempt in
    progress) are left reserved until a later run.

    Invites that were evaluated but whose completion charge never landed are
    charged instead of refunded. Safe to run concurrently with live traffic:
    every entry is re-locked and re-checked inside its own transaction.
    """
    now = now or datetime.now(timezone.utc)
    grace_days = settings.REFUND_GRACE_DAYS if grace_days is None else grace_days
    cutoff = now - timedelta(days=grace_days)
    logger.info("Refund sweep checking reservations created before %s", cutoff.isoformat())

    candidates = (
        db.query(CreditLedgerEntry)
        .filter(
            CreditLedgerEntry.status == LedgerStatus.RESERVED,
            CreditLedgerEntry.created_at < cutoff,
        )
        .order_by(CreditLedgerEntry.id.asc())
        .all()
    )
    snapshot = [
        (entry.id, entry.invite_id, Decimal(str(entry.reserved_amount or 0)), entry.created_at)
        for entry in candidates
    ]
    logger.info("Refund sweep found %d stale reservations", len(snapshot))

    refunded = 0
    charged = 0
    failed = 0
    total_amount = Decimal("0")

    for entry_id, invite_id, reserved_amount, created_at in snapshot:
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == invite_id).first()
        if invite and invite.status == InviteStatus.EVALUATED:
            result = charge_completion_credits(db, invite_id)
            if result.success:
                charged += 1
            else:
                failed += 1
                logger.error("Sweep could not settle evaluated invite_id=%s: %s", invite_id, result.message)
            continue

        if invite and _invite_is_live(db, invite, now):
            # rotated or still running; the reservation is settled once the invite lapses
            logger.info("Sweep left live invite_id=%s reserved", invite_id)
            continue

        entry = db.query(CreditLedgerEntry).filter(CreditLedgerEntry.id == entry_id).first()
        invited_on = created_at.date().isoformat() if created_at else "unknown date"
        reason = f"Auto-refund: not completed within {grace_days} days (invited {invited_on})"
        if entry is not None and _refund_and_expire(db, entry, reason):
            refunded += 1
            total_amount += reserved_amount
        else:
            failed += 1

    summary = {
        "refunded": refunded,
        "charged": charged,
        "failed": failed,
        "totalAmount": float(round(total_amount, 1)),
    }
    logger.info(
        "Refund sweep completed: %d refunded, %d charged, %d failed, %s credits returned",
        refunded, charged, failed, summary["totalAmount"],
    )
    return summary
