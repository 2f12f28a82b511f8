"""Billing: company credit balance and ledger history."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...components.credits.ledger import HISTORY_LIMIT, get_credit_balance, get_credit_history
from ...components.credits.pricing import ASSESSMENT_PRICING
from ...platform.database import get_db
from ...platform.errors import NotFoundError
from ...platform.security import Principal, require_recruiter
from ...schemas.credits import LedgerEntryResponse

router = APIRouter(prefix="/credits", tags=["Billing"])


@router.get("/balance")
def credit_balance(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_recruiter),
):
    balance = get_credit_balance(db, principal.company_id)
    if balance is None:
        raise NotFoundError("Company not found")
    return balance


@router.get("/history")
def credit_history(
    limit: int = Query(default=HISTORY_LIMIT, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_recruiter),
):
    """Latest ledger entries for the caller's company, newest first."""
    entries = get_credit_history(db, principal.company_id, limit=limit)
    return {
        "entries": [LedgerEntryResponse.model_validate(e).model_dump(mode="json") for e in entries],
        "count": len(entries),
    }


@router.get("/pricing")
def credit_pricing(principal: Principal = Depends(require_recruiter)):
    return {
        assessment_type.value: {difficulty.value: price.as_dict() for difficulty, price in by_difficulty.items()}
        for assessment_type, by_difficulty in ASSESSMENT_PRICING.items()
    }
