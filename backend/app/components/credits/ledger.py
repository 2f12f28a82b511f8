"""Company credit ledger: reserve on invite, charge on completion, refund otherwise.

Each public operation is one database transaction. The company row and the
open reservation row are locked with ``SELECT ... FOR UPDATE`` so concurrent
charge/refund calls on the same invite serialize and only one of them finds
the RESERVED entry. The ``*_in_transaction`` variants only flush, letting a
caller fold ledger work into its own unit of work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.company import Company
from ...models.credit_ledger import CreditLedgerEntry, LedgerStatus
from ...models.invite import AssessmentInvite, InviteStatus
from ...models.job import Job
from ...platform.config import settings
from ...platform.errors import ConsistencyError, DomainError, InsufficientCreditsError, NotFoundError
from .pricing import current_billing_cycle, get_assessment_cost, needs_more_credits

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_RESERVE = Decimal("0.5")
HISTORY_LIMIT = 50


@dataclass
class LedgerResult:
    success: bool
    message: Optional[str] = None
    entry_id: Optional[int] = None
    amount: Optional[Decimal] = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.message:
            payload["message"] = self.message
        if self.entry_id is not None:
            payload["entryId"] = self.entry_id
        if self.amount is not None:
            payload["amount"] = float(self.amount)
        return payload


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


def _lock_company(db: Session, company_id: int) -> Company:
    company = db.query(Company).filter(Company.id == company_id).with_for_update().first()
    if not company:
        raise NotFoundError("Company not found")
    return company


def _lock_open_reservation(db: Session, invite_id: int) -> CreditLedgerEntry | None:
    return (
        db.query(CreditLedgerEntry)
        .filter(
            CreditLedgerEntry.invite_id == invite_id,
            CreditLedgerEntry.status == LedgerStatus.RESERVED,
        )
        .with_for_update()
        .first()
    )


def get_open_reservation(db: Session, invite_id: int) -> CreditLedgerEntry | None:
    return (
        db.query(CreditLedgerEntry)
        .filter(
            CreditLedgerEntry.invite_id == invite_id,
            CreditLedgerEntry.status == LedgerStatus.RESERVED,
        )
        .first()
    )


# ---------------------------------------------------------------------------
# Balance checks
# ---------------------------------------------------------------------------

def effective_balance(company: Company) -> Decimal:
    return _dec(company.credits_available) - _dec(company.credits_reserved)


def has_available_credits(db: Session, company_id: int, required: Decimal | float = DEFAULT_RESERVE) -> bool:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        return False
    return effective_balance(company) >= _dec(required)


# ---------------------------------------------------------------------------
# Reserve
# ---------------------------------------------------------------------------

def reserve_credits_in_transaction(
    db: Session,
    *,
    company_id: int,
    invite_id: int,
    assessment_type,
    difficulty,
) -> CreditLedgerEntry:
    """Hold the reserve cost for an invite. Availability is checked under the row lock."""
    pricing = get_assessment_cost(assessment_type, difficulty)
    company = _lock_company(db, company_id)

    if effective_balance(company) < pricing.reserve:
        raise InsufficientCreditsError(
            "Not enough credits available",
            extra={"required": float(pricing.reserve), "effectiveBalance": float(effective_balance(company))},
        )

    company.credits_reserved = _dec(company.credits_reserved) + pricing.reserve
    entry = CreditLedgerEntry(
        invite_id=invite_id,
        company_id=company_id,
        kind="ASSESSMENT_INVITE",
        cycle=current_billing_cycle(),
        amount=pricing.reserve,
        status=LedgerStatus.RESERVED,
        reserved_amount=pricing.reserve,
        assessment_type=assessment_type,
        difficulty=difficulty,
        entry_metadata={"pricing": pricing.as_dict(), "reservedAt": _now_iso(), "type": "RESERVE"},
    )
    db.add(entry)
    db.flush()
    logger.info(
        "Reserved %s credits company_id=%s invite_id=%s entry_id=%s",
        pricing.reserve, company_id, invite_id, entry.id,
    )
    return entry


def reserve_credits(db: Session, company_id: int, invite_id: int, assessment_type, difficulty) -> LedgerResult:
    try:
        entry = reserve_credits_in_transaction(
            db,
            company_id=company_id,
            invite_id=invite_id,
            assessment_type=assessment_type,
            difficulty=difficulty,
        )
        db.commit()
    except DomainError as exc:
        db.rollback()
        return LedgerResult(success=False, message=exc.message)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to reserve credits company_id=%s invite_id=%s", company_id, invite_id)
        return LedgerResult(success=False, message="Could not reserve credits")
    return LedgerResult(success=True, entry_id=entry.id, amount=_dec(entry.reserved_amount))


# ---------------------------------------------------------------------------
# Charge
# ---------------------------------------------------------------------------

def charge_completion_credits_in_transaction(db: Session, invite_id: int) -> CreditLedgerEntry:
    entry = _lock_open_reservation(db, invite_id)
    if not entry or not entry.assessment_type or not entry.difficulty:
        raise ConsistencyError("No open credit reservation for this invite")

    pricing = get_assessment_cost(entry.assessment_type, entry.difficulty)
    reserved_amount = _dec(entry.reserved_amount)
    company = _lock_company(db, entry.company_id)

    if _dec(company.credits_available) < pricing.total:
        raise InsufficientCreditsError("Not enough credits to charge completion")

    company.credits_reserved = max(ZERO, _dec(company.credits_reserved) - reserved_amount)
    company.credits_available = _dec(company.credits_available) - pricing.total
    company.credits_used = _dec(company.credits_used) + pricing.total

    entry.status = LedgerStatus.CHARGED
    entry.charged_amount = pricing.total
    entry.amount = pricing.total
    entry.entry_metadata = {
        **(entry.entry_metadata or {}),
        "chargedAt": _now_iso(),
        "completionCharge": str(pricing.complete),
        "type": "CHARGE",
    }
    db.flush()
    logger.info(
        "Charged %s credits company_id=%s invite_id=%s entry_id=%s",
        pricing.total, entry.company_id, invite_id, entry.id,
    )
    return entry


def charge_completion_credits(db: Session, invite_id: int) -> LedgerResult:
    """Close the invite's reservation as CHARGED. A second call is a no-op failure."""
    try:
        entry = charge_completion_credits_in_transaction(db, invite_id)
        db.commit()
    except ConsistencyError as exc:
        db.rollback()
        logger.warning("Completion charge skipped invite_id=%s: %s", invite_id, exc.message)
        return LedgerResult(success=False, message=exc.message)
    except DomainError as exc:
        db.rollback()
        logger.error("Completion charge failed invite_id=%s: %s", invite_id, exc.message)
        return LedgerResult(success=False, message=exc.message)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to charge completion credits invite_id=%s", invite_id)
        return LedgerResult(success=False, message="Could not charge completion credits")
    return LedgerResult(success=True, entry_id=entry.id, amount=_dec(entry.charged_amount))


# ---------------------------------------------------------------------------
# Refund
# ---------------------------------------------------------------------------

def refund_reserved_credits_in_transaction(db: Session, invite_id: int, reason: str) -> CreditLedgerEntry:
    entry = _lock_open_reservation(db, invite_id)
    if not entry or entry.reserved_amount is None:
        raise ConsistencyError("No open credit reservation for this invite")

    reserved_amount = _dec(entry.reserved_amount)
    company = _lock_company(db, entry.company_id)
    company.credits_reserved = max(ZERO, _dec(company.credits_reserved) - reserved_amount)

    entry.status = LedgerStatus.REFUNDED
    entry.refunded_amount = reserved_amount
    entry.amount = ZERO
    entry.entry_metadata = {
        **(entry.entry_metadata or {}),
        "refundedAt": _now_iso(),
        "reason": reason,
        "type": "REFUND",
    }
    db.flush()
    logger.info(
        "Refunded %s credits company_id=%s invite_id=%s reason=%s",
        reserved_amount, entry.company_id, invite_id, reason,
    )
    return entry


def refund_reserved_credits(db: Session, invite_id: int, reason: str = "Not completed in time") -> LedgerResult:
    try:
        entry = refund_reserved_credits_in_transaction(db, invite_id, reason)
        db.commit()
    except DomainError as exc:
        db.rollback()
        logger.warning("Refund skipped invite_id=%s: %s", invite_id, exc.message)
        return LedgerResult(success=False, message=exc.message)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to refund credits invite_id=%s", invite_id)
        return LedgerResult(success=False, message="Could not refund credits")
    return LedgerResult(success=True, entry_id=entry.id, amount=_dec(entry.refunded_amount))


def cancel_invite_and_refund(db: Session, invite_id: int, company_id: Optional[int] = None) -> LedgerResult:
    """Refund the reservation and mark the invite CANCELLED in one transaction.

    When ``company_id`` is given the invite must belong to one of that
    company's jobs; otherwise it is reported as not found.
    """
    query = db.query(AssessmentInvite).filter(AssessmentInvite.id == invite_id)
    if company_id is not None:
        query = query.join(Job, Job.id == AssessmentInvite.job_id).filter(Job.company_id == company_id)
    invite = query.with_for_update().first()
    if not invite:
        raise NotFoundError("Invite not found")

    try:
        refund_reserved_credits_in_transaction(db, invite.id, "Cancelled by recruiter")
        invite.status = InviteStatus.CANCELLED
        invite.cancelled_at = datetime.now(timezone.utc)
        db.commit()
    except DomainError as exc:
        db.rollback()
        return LedgerResult(success=False, message=exc.message)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to cancel invite invite_id=%s", invite_id)
        return LedgerResult(success=False, message="Could not cancel invite")
    return LedgerResult(success=True)


# ---------------------------------------------------------------------------
# Top-up and reads
# ---------------------------------------------------------------------------

def add_credits(db: Session, company_id: int, amount: Decimal | float, reason: str = "Credit purchase") -> LedgerResult:
    value = _dec(amount)
    if value <= ZERO:
        return LedgerResult(success=False, message="Amount must be positive")
    try:
        company = _lock_company(db, company_id)
        company.credits_available = _dec(company.credits_available) + value
        db.commit()
    except DomainError as exc:
        db.rollback()
        return LedgerResult(success=False, message=exc.message)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to add credits company_id=%s", company_id)
        return LedgerResult(success=False, message="Could not add credits")
    logger.info("Added %s credits company_id=%s reason=%s", value, company_id, reason)
    return LedgerResult(success=True, amount=value)


def get_credit_balance(db: Session, company_id: int) -> dict[str, Any] | None:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        return None
    effective = effective_balance(company)
    return {
        "available": float(_dec(company.credits_available)),
        "reserved": float(_dec(company.credits_reserved)),
        "used": float(_dec(company.credits_used)),
        "effectiveBalance": float(effective),
        "lowBalance": needs_more_credits(effective, settings.LOW_CREDIT_THRESHOLD),
    }


def get_credit_history(db: Session, company_id: int, limit: int = HISTORY_LIMIT) -> list[CreditLedgerEntry]:
    return (
        db.query(CreditLedgerEntry)
        .filter(CreditLedgerEntry.company_id == company_id)
        .order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc())
        .limit(max(1, min(int(limit), 200)))
        .all()
    )
