"""Candidate runtime: start, answer, submit, proctoring flags and code execution."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...components.attempts.service import save_answer, start_attempt, submit_attempt
from ...components.code_execution.judge0_client import Judge0Client
from ...components.code_execution.rate_limit import ExecutionRateLimiter, get_rate_limiter
from ...components.code_execution.service import run_code_for_attempt
from ...components.proctoring.service import record_proctoring_events
from ...domains.integrations_notifications.adapters import build_sandbox_adapter
from ...platform.database import get_db
from ...platform.middleware import get_client_ip
from ...platform.security import Principal, require_candidate
from ...schemas.attempt import AnswerRequest, AttemptStartRequest
from ...schemas.code_execution import CodeExecutionRequest
from ...schemas.proctoring import ProctoringBatch

router = APIRouter()


def get_sandbox_client() -> Judge0Client:
    return build_sandbox_adapter()


@router.post("/assessments/{template_id}/start")
def start_assessment_attempt(
    template_id: int,
    data: AttemptStartRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_candidate),
):
    """Start or resume the candidate's attempt using the invite token."""
    return start_attempt(
        db,
        principal,
        template_id,
        data.token,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/attempts/{attempt_id}/answer")
def answer_question(
    attempt_id: int,
    data: AnswerRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_candidate),
):
    return save_answer(
        db,
        principal,
        attempt_id,
        data.question_id,
        data.selected_options,
        time_spent_seconds=data.time_spent_seconds,
    )


@router.post("/attempts/{attempt_id}/submit")
def submit_assessment_attempt(
    attempt_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_candidate),
):
    return submit_attempt(db, principal, attempt_id)


@router.patch("/attempts/{attempt_id}/flags")
def report_proctoring_flags(
    attempt_id: int,
    data: ProctoringBatch,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_candidate),
):
    """Ingest a batch of browser integrity events for the attempt."""
    return record_proctoring_events(
        db,
        principal,
        attempt_id,
        data.as_dicts(),
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/code/execute")
def execute_code(
    data: CodeExecutionRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_candidate),
    client: Judge0Client = Depends(get_sandbox_client),
    limiter: ExecutionRateLimiter = Depends(get_rate_limiter),
):
    """Run code against visible test cases, or submit it against all of them."""
    return run_code_for_attempt(
        db,
        principal,
        attempt_id=data.attempt_id,
        question_id=data.question_id,
        code=data.code,
        language=data.language,
        is_submission=data.is_submission,
        client=client,
        limiter=limiter,
    )
