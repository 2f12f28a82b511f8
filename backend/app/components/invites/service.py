"""Invite lifecycle: create, reuse or rotate the one invite per (application, template).

A new invite reserves credits in the same transaction that creates it, so an
invite never exists without a reservation. Re-sending a live invite reuses it
as-is; re-sending a dead one (expired, cancelled, evaluated) rotates its token
and detaches stale open attempts so a fresh attempt can claim the invite.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.assessment_template import AssessmentTemplate
from ...models.attempt import OPEN_ATTEMPT_STATUSES, AssessmentAttempt, AttemptStatus
from ...models.invite import AssessmentInvite, InviteStatus
from ...models.job import Application, Job, JobAssessment
from ...platform.config import settings
from ...platform.errors import DomainError, NotFoundError
from ...platform.security import Principal
from ..attempts.repository import attempt_to_dict, ensure_utc, isoformat, utcnow
from ..credits.ledger import get_open_reservation, reserve_credits_in_transaction
from ..notifications.email_client import InviteEmail, InviteMailer

logger = logging.getLogger(__name__)

REUSABLE_STATUSES = (InviteStatus.SENT, InviteStatus.STARTED)

EMAIL_SENT = "sent"
EMAIL_SKIPPED = "skipped"
EMAIL_FAILED = "failed"


def generate_invite_token() -> str:
    return secrets.token_hex(32)


def build_invite_url(template_id: int, token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/assessments/{template_id}?token={token}"


def is_reusable(invite: AssessmentInvite, now=None) -> bool:
    if invite.status not in REUSABLE_STATUSES:
        return False
    expires_at = ensure_utc(invite.expires_at)
    return expires_at is None or expires_at > (now or utcnow())


def invite_to_dict(invite: AssessmentInvite) -> Dict[str, Any]:
    return {
        "id": invite.id,
        "applicationId": invite.application_id,
        "jobId": invite.job_id,
        "candidateId": invite.candidate_id,
        "templateId": invite.template_id,
        "status": invite.status.value if invite.status else None,
        "expiresAt": isoformat(invite.expires_at),
        "sentAt": isoformat(invite.sent_at),
        "cancelledAt": isoformat(invite.cancelled_at),
    }


def _load_application(db: Session, application_id: int, company_id: int) -> Application:
    application = (
        db.query(Application)
        .join(Job, Job.id == Application.job_id)
        .filter(Application.id == application_id, Job.company_id == company_id)
        .first()
    )
    if not application:
        raise NotFoundError("Application not found")
    return application


def _select_job_assessment(db: Session, job_id: int, template_id: Optional[int]) -> JobAssessment:
    query = db.query(JobAssessment).filter(JobAssessment.job_id == job_id)
    if template_id is not None:
        assignment = query.filter(JobAssessment.template_id == template_id).first()
        if not assignment:
            raise DomainError("Assessment template is not assigned to this job", code="template_not_assigned")
        return assignment
    assignment = query.order_by(JobAssessment.id.asc()).first()
    if not assignment:
        raise DomainError("No assessment is assigned to this job", code="no_assessment_assigned")
    return assignment


def _find_invite(db: Session, application_id: int, template_id: int) -> Optional[AssessmentInvite]:
    return (
        db.query(AssessmentInvite)
        .filter(AssessmentInvite.application_id == application_id, AssessmentInvite.template_id == template_id)
        .with_for_update()
        .first()
    )


def _create_invite(
    db: Session,
    application: Application,
    template: AssessmentTemplate,
    principal: Principal,
    expires_in_days: int,
) -> tuple[AssessmentInvite, bool]:
    """Insert the invite inside a SAVEPOINT. Returns (invite, created)."""
    invite = AssessmentInvite(
        application_id=application.id,
        job_id=application.job_id,
        candidate_id=application.candidate_id,
        template_id=template.id,
        token=generate_invite_token(),
        status=InviteStatus.SENT,
        expires_at=utcnow() + timedelta(days=expires_in_days),
        invited_by_id=principal.user_id,
    )
    try:
        with db.begin_nested():
            db.add(invite)
    except IntegrityError:
        # a concurrent request created the same (application, template) invite
        logger.info("Invite creation race application_id=%s template_id=%s", application.id, template.id)
        existing = _find_invite(db, application.id, template.id)
        if existing is None:
            raise
        return existing, False
    return invite, True


def _rotate_invite(db: Session, invite: AssessmentInvite, expires_in_days: int) -> int:
    """New token, status SENT, fresh expiry. Returns the number of attempts detached."""
    invite.token = generate_invite_token()
    invite.status = InviteStatus.SENT
    invite.expires_at = utcnow() + timedelta(days=expires_in_days)
    invite.sent_at = None
    invite.cancelled_at = None
    detached = (
        db.query(AssessmentAttempt)
        .filter(
            AssessmentAttempt.invite_id == invite.id,
            AssessmentAttempt.status.in_(OPEN_ATTEMPT_STATUSES),
        )
        .update({AssessmentAttempt.invite_id: None}, synchronize_session=False)
    )
    db.flush()
    return detached


def _ensure_pending_attempt(db: Session, invite: AssessmentInvite, application: Application) -> AssessmentAttempt:
    attempt = (
        db.query(AssessmentAttempt)
        .filter(
            AssessmentAttempt.invite_id == invite.id,
            AssessmentAttempt.status.in_(OPEN_ATTEMPT_STATUSES),
        )
        .first()
    )
    if attempt:
        return attempt
    attempt = AssessmentAttempt(
        application_id=application.id,
        candidate_id=application.candidate_id,
        template_id=invite.template_id,
        invite_id=invite.id,
        status=AttemptStatus.NOT_STARTED,
        attempt_number=1,
    )
    db.add(attempt)
    db.flush()
    return attempt


def _detached_attempt(db: Session, application: Application, template_id: int) -> Optional[AssessmentAttempt]:
    """Latest open attempt for the application left unlinked by a rotation."""
    return (
        db.query(AssessmentAttempt)
        .filter(
            AssessmentAttempt.application_id == application.id,
            AssessmentAttempt.template_id == template_id,
            AssessmentAttempt.invite_id.is_(None),
            AssessmentAttempt.status.in_(OPEN_ATTEMPT_STATUSES),
        )
        .order_by(AssessmentAttempt.id.desc())
        .first()
    )


def _send_invite_email(
    mailer: Optional[InviteMailer],
    invite: AssessmentInvite,
    application: Application,
    template: AssessmentTemplate,
    invite_url: str,
) -> tuple[str, Optional[str]]:
    if mailer is None:
        return EMAIL_SKIPPED, None
    candidate = application.candidate
    job = application.job
    company = job.company if job else None
    expires_at = ensure_utc(invite.expires_at)
    result = mailer.send_assessment_invite(
        InviteEmail(
            to_email=candidate.email,
            candidate_name=candidate.name or candidate.email,
            company_name=company.name if company else "",
            job_title=job.title if job else "",
            assessment_title=template.title,
            time_limit_minutes=template.time_limit_minutes,
            invite_url=invite_url,
            expires_on=expires_at.strftime("%B %d, %Y") if expires_at else None,
        )
    )
    if result.get("success"):
        return EMAIL_SENT, None
    return EMAIL_FAILED, result.get("error") or "Email send failed"


def issue_invite(
    db: Session,
    principal: Principal,
    application_id: int,
    template_id: Optional[int] = None,
    expires_in_days: Optional[int] = None,
    mailer: Optional[InviteMailer] = None,
) -> Dict[str, Any]:
    """Create, reuse or rotate the invite for an application's assessment and email it.

    Raises:
        NotFoundError: application outside the recruiter's company.
        DomainError: template not assigned to the job.
        InsufficientCreditsError: the reservation could not be made; nothing is written.
    """
    days = int(expires_in_days or settings.INVITE_EXPIRY_DAYS)
    application = _load_application(db, application_id, principal.company_id)
    assignment = _select_job_assessment(db, application.job_id, template_id)
    template = db.query(AssessmentTemplate).filter(AssessmentTemplate.id == assignment.template_id).first()
    if not template or not template.is_active:
        raise NotFoundError("Assessment template not found")

    created = False
    reused = False
    rotated = False
    try:
        invite = _find_invite(db, application.id, template.id)
        if invite is None:
            invite, created = _create_invite(db, application, template, principal, days)
            if created:
                reserve_credits_in_transaction(
                    db,
                    company_id=principal.company_id,
                    invite_id=invite.id,
                    assessment_type=template.type,
                    difficulty=template.difficulty,
                )
        if not created:
            if is_reusable(invite):
                reused = True
                if invite.status == InviteStatus.SENT:
                    invite.expires_at = utcnow() + timedelta(days=days)
            else:
                detached = _rotate_invite(db, invite, days)
                rotated = True
                logger.info("Rotated invite invite_id=%s detached_attempts=%s", invite.id, detached)
                if get_open_reservation(db, invite.id) is None:
                    reserve_credits_in_transaction(
                        db,
                        company_id=principal.company_id,
                        invite_id=invite.id,
                        assessment_type=template.type,
                        difficulty=template.difficulty,
                    )

        if rotated:
            # the rotated invite stays without attempts until the candidate starts
            attempt = _detached_attempt(db, application, template.id)
        else:
            attempt = _ensure_pending_attempt(db, invite, application)
        db.commit()
    except (DomainError, SQLAlchemyError):
        db.rollback()
        raise

    invite_url = build_invite_url(template.id, invite.token)
    email_status, email_error = EMAIL_SKIPPED, None
    if invite.sent_at is None or rotated:
        email_status, email_error = _send_invite_email(mailer, invite, application, template, invite_url)
        if email_status == EMAIL_SENT:
            invite.sent_at = utcnow()
            db.commit()
        elif email_status == EMAIL_FAILED:
            logger.warning("Invite email failed invite_id=%s: %s", invite.id, email_error)

    logger.info(
        "Issued invite invite_id=%s application_id=%s created=%s reused=%s rotated=%s email=%s",
        invite.id, application.id, created, reused, rotated, email_status,
    )
    return {
        "template": {
            "id": template.id,
            "title": template.title,
            "type": template.type.value,
            "difficulty": template.difficulty.value,
            "timeLimitMinutes": template.time_limit_minutes,
        },
        "jobAssessment": {
            "id": assignment.id,
            "jobId": assignment.job_id,
            "templateId": assignment.template_id,
            "isRequired": assignment.is_required,
            "minScore": assignment.min_score,
        },
        "attempt": attempt_to_dict(attempt) if attempt else None,
        "invite": invite_to_dict(invite),
        "inviteUrl": invite_url,
        "emailStatus": email_status,
        "emailError": email_error,
        "meta": {"reusedInvite": reused, "createdInvite": created, "rotated": rotated},
    }
