"""Candidate attempt workflow: start, answer, submit, and the overdue sweep."""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.assessment_template import AssessmentQuestion, AssessmentTemplate, QuestionType, TestCase
from ...models.attempt import AssessmentAttempt, AttemptAnswer, AttemptStatus
from ...models.invite import AssessmentInvite, InviteStatus
from ...models.job import Application, JobAssessment
from ...platform.errors import AuthorizationError, DomainError, NotFoundError, StateError
from ...platform.security import Principal
from ..credits.ledger import charge_completion_credits_in_transaction
from ..scoring.service import grade_mcq, score_attempt
from .repository import attempt_to_dict, ensure_utc, get_attempt_for_candidate, isoformat, utcnow
from .state import ATTEMPT_ALREADY_SUBMITTED, ATTEMPT_TIME_EXPIRED, begin, ensure_attempt_mutable, is_time_expired

logger = logging.getLogger(__name__)

FINISHED_STATUSES = (AttemptStatus.SUBMITTED, AttemptStatus.EVALUATED, AttemptStatus.EXPIRED)
_HIDDEN_OPTION_MARKERS = ("correct", "answer", "score", "points")


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def sanitize_options(options: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    """Drop every option key that could reveal correctness."""
    cleaned = []
    for option in options or []:
        if not isinstance(option, dict):
            continue
        cleaned.append(
            {k: v for k, v in option.items() if not any(marker in k.lower() for marker in _HIDDEN_OPTION_MARKERS)}
        )
    return cleaned


def question_to_candidate_dict(question: AssessmentQuestion) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": question.id,
        "type": question.type.value,
        "section": question.section,
        "difficulty": question.difficulty,
        "questionText": question.question_text,
        "codeSnippet": question.code_snippet,
    }
    if question.type == QuestionType.MCQ:
        payload["options"] = sanitize_options(question.options)
        payload["allowMultiple"] = bool(question.allow_multiple)
    else:
        payload["allowedLanguages"] = question.allowed_languages
        payload["sampleTestCases"] = [
            {"id": tc.id, "input": tc.input, "expectedOutput": tc.expected_output}
            for tc in question.test_cases
            if not tc.is_hidden
        ]
    return payload


def _saved_answers(db: Session, attempt_id: int) -> Dict[str, Any]:
    answers = db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt_id).all()
    return {
        str(a.question_id): {
            "selectedOptions": a.selected_options or [],
            "language": a.language,
            "answeredAt": isoformat(a.answered_at),
        }
        for a in answers
    }


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------

def _load_invite_for_start(db: Session, token: str, template_id: int, principal: Principal, now: datetime) -> AssessmentInvite:
    invite = (
        db.query(AssessmentInvite)
        .filter(AssessmentInvite.token == token)
        .with_for_update()
        .first()
    )
    if not invite:
        raise DomainError("Invalid invite token", code="invalid_invite_token")
    if invite.candidate_id != principal.user_id:
        raise AuthorizationError("This invite belongs to another candidate")
    if invite.template_id != template_id:
        raise DomainError("Invite does not match this assessment", code="invite_template_mismatch")
    if invite.status == InviteStatus.CANCELLED:
        raise StateError("Invite was cancelled", code="invite_cancelled")
    if invite.status == InviteStatus.EVALUATED:
        raise StateError("Assessment already completed", code="invite_completed")
    expires_at = ensure_utc(invite.expires_at)
    # a STARTED invite can still resume its live attempt past the invite expiry
    if invite.status == InviteStatus.EXPIRED or (
        invite.status == InviteStatus.SENT and expires_at is not None and expires_at <= now
    ):
        raise StateError("Invite has expired", code="invite_expired")
    return invite


def _ordered_questions(db: Session, template: AssessmentTemplate, attempt: AssessmentAttempt) -> List[AssessmentQuestion]:
    questions = (
        db.query(AssessmentQuestion)
        .filter(AssessmentQuestion.template_id == template.id, AssessmentQuestion.is_active.is_(True))
        .order_by(AssessmentQuestion.order_index.asc(), AssessmentQuestion.id.asc())
        .all()
    )
    order = (attempt.flags or {}).get("questionOrder")
    if not order:
        return questions
    position = {qid: i for i, qid in enumerate(order)}
    return sorted(questions, key=lambda q: position.get(q.id, len(position)))


def _start_payload(db: Session, attempt: AssessmentAttempt, template: AssessmentTemplate, resumed: bool) -> Dict[str, Any]:
    questions = _ordered_questions(db, template, attempt)
    return {
        "attempt": attempt_to_dict(attempt),
        "template": {
            "id": template.id,
            "title": template.title,
            "type": template.type.value,
            "difficulty": template.difficulty.value,
            "timeLimitMinutes": template.time_limit_minutes,
            "passingScore": template.passing_score,
            "sections": template.sections or [],
        },
        "questions": [question_to_candidate_dict(q) for q in questions],
        "savedAnswers": _saved_answers(db, attempt.id),
        "resumed": resumed,
        "serverTime": isoformat(utcnow()),
    }


def start_attempt(
    db: Session,
    principal: Principal,
    template_id: int,
    token: str,
    *,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Begin (or resume) the candidate's timed attempt for an invited template."""
    now = now or utcnow()
    try:
        invite = _load_invite_for_start(db, token, template_id, principal, now)

        application = db.query(Application).filter(Application.id == invite.application_id).first()
        if not application or application.candidate_id != principal.user_id:
            raise AuthorizationError("Not authorized for this application")
        assigned = (
            db.query(JobAssessment)
            .filter(JobAssessment.job_id == application.job_id, JobAssessment.template_id == template_id)
            .first()
        )
        if not assigned:
            raise DomainError("Assessment is not assigned to this job", code="template_not_assigned")

        template = db.query(AssessmentTemplate).filter(AssessmentTemplate.id == template_id).first()
        if not template or not template.is_active:
            raise NotFoundError("Assessment not found")

        live = (
            db.query(AssessmentAttempt)
            .filter(
                AssessmentAttempt.invite_id == invite.id,
                AssessmentAttempt.status == AttemptStatus.IN_PROGRESS,
            )
            .with_for_update()
            .first()
        )
        if live is not None:
            if not is_time_expired(live, now):
                db.commit()
                return _start_payload(db, live, template, resumed=True)
            # persist the expiry even if the retry policy rejects a new attempt below
            live.status = AttemptStatus.EXPIRED
            db.commit()
            invite = _load_invite_for_start(db, token, template_id, principal, now)

        # only the resume above may use an invite past its expiry
        invite_expires_at = ensure_utc(invite.expires_at)
        if invite_expires_at is not None and invite_expires_at <= now:
            raise StateError("Invite has expired", code="invite_expired")

        used = (
            db.query(func.count(AssessmentAttempt.id))
            .filter(
                AssessmentAttempt.candidate_id == principal.user_id,
                AssessmentAttempt.template_id == template.id,
                AssessmentAttempt.application_id == application.id,
                AssessmentAttempt.status.in_(FINISHED_STATUSES),
                AssessmentAttempt.started_at.isnot(None),
            )
            .scalar()
            or 0
        )
        if used > 0 and not template.allow_retry:
            raise StateError("Retries are not allowed for this assessment", code="retry_not_allowed")
        if used >= max(1, int(template.max_attempts or 1)):
            raise StateError("Maximum number of attempts reached", code="max_attempts_reached")

        attempt = (
            db.query(AssessmentAttempt)
            .filter(
                AssessmentAttempt.invite_id == invite.id,
                AssessmentAttempt.status == AttemptStatus.NOT_STARTED,
            )
            .with_for_update()
            .first()
        )
        if attempt is None:
            attempt = AssessmentAttempt(
                application_id=application.id,
                candidate_id=principal.user_id,
                template_id=template.id,
                invite_id=invite.id,
                status=AttemptStatus.NOT_STARTED,
            )
            db.add(attempt)

        attempt.attempt_number = used + 1
        begin(attempt, template.time_limit_minutes, now)
        attempt.ip_address = ip_address
        attempt.user_agent = (user_agent or "")[:512] or None

        question_ids = [
            row[0]
            for row in db.query(AssessmentQuestion.id)
            .filter(AssessmentQuestion.template_id == template.id, AssessmentQuestion.is_active.is_(True))
            .order_by(AssessmentQuestion.order_index.asc(), AssessmentQuestion.id.asc())
            .all()
        ]
        if template.shuffle_questions:
            random.shuffle(question_ids)
        attempt.flags = {**(attempt.flags or {}), "questionOrder": question_ids}

        if invite.status == InviteStatus.SENT:
            invite.status = InviteStatus.STARTED
        db.commit()
    except (DomainError, SQLAlchemyError):
        db.rollback()
        raise

    db.refresh(attempt)
    logger.info(
        "Attempt started attempt_id=%s candidate_id=%s template_id=%s attempt_number=%s",
        attempt.id, principal.user_id, template.id, attempt.attempt_number,
    )
    return _start_payload(db, attempt, template, resumed=False)


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------

def save_answer(
    db: Session,
    principal: Principal,
    attempt_id: int,
    question_id: int,
    selected_options: Iterable[str],
    time_spent_seconds: Optional[int] = None,
) -> Dict[str, Any]:
    """Grade and upsert an MCQ answer. Correctness is never returned to the candidate."""
    attempt = get_attempt_for_candidate(db, attempt_id, principal, for_update=True)
    ensure_attempt_mutable(attempt)

    question = (
        db.query(AssessmentQuestion)
        .filter(AssessmentQuestion.id == question_id, AssessmentQuestion.template_id == attempt.template_id)
        .first()
    )
    if not question:
        raise NotFoundError("Question not found")
    if question.type != QuestionType.MCQ:
        raise DomainError("Coding answers are recorded through code submission", code="not_mcq_question")

    selected: List[str] = []
    for option_id in selected_options or []:
        option_id = str(option_id)
        if option_id not in selected:
            selected.append(option_id)
    if not selected:
        raise DomainError("Select at least one option", code="empty_answer")
    if len(selected) > 1 and not question.allow_multiple:
        raise DomainError("Only one option may be selected", code="single_choice_only")
    valid_ids = {str(o.get("id")) for o in (question.options or []) if isinstance(o, dict)}
    invalid = [s for s in selected if s not in valid_ids]
    if invalid:
        raise DomainError("Unknown option selected", code="invalid_option", extra={"invalidOptions": invalid})

    template = db.query(AssessmentTemplate).filter(AssessmentTemplate.id == attempt.template_id).first()
    grade = grade_mcq(question.options, selected, bool(template.penalize_wrong) if template else False)

    try:
        answer = (
            db.query(AttemptAnswer)
            .filter(AttemptAnswer.attempt_id == attempt.id, AttemptAnswer.question_id == question.id)
            .first()
        )
        first_answer = answer is None
        if first_answer:
            answer = AttemptAnswer(attempt_id=attempt.id, question_id=question.id)
            db.add(answer)
        answer.selected_options = selected
        answer.is_correct = grade.is_correct
        answer.points_earned = grade.points_earned
        if time_spent_seconds is not None:
            answer.time_spent_seconds = max(0, int(time_spent_seconds))
        answer.answered_at = utcnow()
        if first_answer:
            db.query(AssessmentQuestion).filter(AssessmentQuestion.id == question.id).update(
                {AssessmentQuestion.times_used: AssessmentQuestion.times_used + 1},
                synchronize_session=False,
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    return {
        "success": True,
        "answerId": answer.id,
        "questionId": question.id,
        "selectedOptions": selected,
        "savedAt": isoformat(answer.answered_at),
    }


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------

def _coding_max_points(db: Session, question_ids: List[int]) -> Dict[int, float]:
    if not question_ids:
        return {}
    rows = (
        db.query(TestCase.question_id, func.sum(TestCase.points))
        .filter(TestCase.question_id.in_(question_ids))
        .group_by(TestCase.question_id)
        .all()
    )
    return {question_id: float(total or 0.0) for question_id, total in rows}


def submit_attempt(
    db: Session,
    principal: Principal,
    attempt_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Freeze the attempt, score it, and charge completion credits.

    The completion charge runs in a SAVEPOINT inside the submit transaction:
    if it fails the submission still stands and the refund sweep settles the
    reservation later.
    """
    now = now or utcnow()
    attempt = get_attempt_for_candidate(db, attempt_id, principal)
    if attempt.status == AttemptStatus.IN_PROGRESS and is_time_expired(attempt, now):
        attempt.status = AttemptStatus.EXPIRED
        db.commit()
        raise StateError("Time expired", code=ATTEMPT_TIME_EXPIRED)
    ensure_attempt_mutable(attempt, now)

    try:
        claimed = (
            db.query(AssessmentAttempt)
            .filter(AssessmentAttempt.id == attempt.id, AssessmentAttempt.status == AttemptStatus.IN_PROGRESS)
            .update(
                {AssessmentAttempt.status: AttemptStatus.SUBMITTED, AssessmentAttempt.submitted_at: now},
                synchronize_session=False,
            )
        )
        if not claimed:
            raise StateError("Attempt was already submitted", code=ATTEMPT_ALREADY_SUBMITTED)
        db.refresh(attempt)

        template = db.query(AssessmentTemplate).filter(AssessmentTemplate.id == attempt.template_id).first()
        questions = _ordered_questions(db, template, attempt)
        answers = db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt.id).all()
        coding_ids = [q.id for q in questions if q.type == QuestionType.CODING]
        score = score_attempt(template, questions, answers, _coding_max_points(db, coding_ids))

        started_at = ensure_utc(attempt.started_at)
        attempt.total_score = score.total_score
        attempt.passed = score.passed
        attempt.section_scores = score.section_scores
        attempt.time_spent_seconds = int((now - started_at).total_seconds()) if started_at else score.time_spent_seconds
        if score.flags:
            attempt.flags = {**(attempt.flags or {}), **score.flags}
        attempt.status = AttemptStatus.EVALUATED
        attempt.evaluated_at = now

        credits_charged = False
        invite = None
        if attempt.invite_id is not None:
            invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == attempt.invite_id).with_for_update().first()
        if invite is not None:
            invite.status = InviteStatus.EVALUATED
            try:
                with db.begin_nested():
                    charge_completion_credits_in_transaction(db, invite.id)
                credits_charged = True
            except DomainError as exc:
                logger.error("Completion charge failed on submit invite_id=%s: %s", invite.id, exc.message)
        db.commit()
    except (DomainError, SQLAlchemyError):
        db.rollback()
        raise

    logger.info(
        "Attempt evaluated attempt_id=%s score=%s passed=%s credits_charged=%s",
        attempt.id, score.total_score, score.passed, credits_charged,
    )
    return {
        "success": True,
        "attempt": attempt_to_dict(attempt),
        "score": score.as_dict(),
        "flags": score.flags,
        "creditsCharged": credits_charged,
    }


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------

def expire_overdue_attempts(db: Session, now: Optional[datetime] = None) -> int:
    """Mark IN_PROGRESS attempts past their deadline EXPIRED. Idempotent."""
    now = now or utcnow()
    try:
        expired = (
            db.query(AssessmentAttempt)
            .filter(
                AssessmentAttempt.status == AttemptStatus.IN_PROGRESS,
                AssessmentAttempt.expires_at.isnot(None),
                AssessmentAttempt.expires_at < now,
            )
            .update({AssessmentAttempt.status: AttemptStatus.EXPIRED}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Attempt expiry sweep failed")
        raise
    logger.info("Attempt expiry sweep expired %d attempts", expired)
    return expired
