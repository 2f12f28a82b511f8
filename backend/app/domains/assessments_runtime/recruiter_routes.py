"""Recruiter invite management."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...components.credits.ledger import cancel_invite_and_refund
from ...components.invites.service import issue_invite
from ...domains.integrations_notifications.adapters import EmailAdapter, build_email_adapter
from ...platform.database import get_db
from ...platform.errors import DomainError
from ...platform.security import Principal, require_recruiter
from ...schemas.invite import InviteIssueRequest

router = APIRouter()


def get_invite_mailer() -> Optional[EmailAdapter]:
    return build_email_adapter()


@router.post("/applications/{application_id}/assessment-invite")
def create_assessment_invite(
    application_id: int,
    data: Optional[InviteIssueRequest] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_recruiter),
    mailer: Optional[EmailAdapter] = Depends(get_invite_mailer),
):
    """Send (or re-send) the assessment invite for an application."""
    data = data or InviteIssueRequest()
    return issue_invite(
        db,
        principal,
        application_id,
        template_id=data.template_id,
        expires_in_days=data.expires_in_days,
        mailer=mailer,
    )


@router.post("/invites/{invite_id}/cancel")
def cancel_invite(
    invite_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_recruiter),
):
    """Cancel an invite and release its credit reservation."""
    result = cancel_invite_and_refund(db, invite_id, company_id=principal.company_id)
    if not result.success:
        raise DomainError(result.message or "Could not cancel invite", code="cancel_failed")
    return {"success": True, "inviteId": invite_id, "status": "CANCELLED"}
