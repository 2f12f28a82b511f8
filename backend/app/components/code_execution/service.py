"""Run/submit workflow for coding questions inside an attempt."""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.assessment_template import AssessmentQuestion, QuestionType, TestCase
from ...models.attempt import AttemptAnswer
from ...models.code_execution import CodeExecution
from ...platform.config import settings
from ...platform.errors import DomainError, NotFoundError
from ...platform.security import Principal
from ..attempts.repository import get_attempt_for_candidate, utcnow
from ..attempts.state import ensure_attempt_mutable
from ..scoring.rules import CODE_SUBMITTED_SENTINEL
from .judge0_client import Judge0Client, is_language_supported, supported_languages
from .orchestrator import (
    MAX_OUTPUT_CHARS,
    TestCaseSpec,
    compute_points,
    execute_test_cases,
    redact_test_results,
    stored_test_results,
    truncate_text,
)
from .rate_limit import ExecutionRateLimiter

logger = logging.getLogger(__name__)


def _load_question(db: Session, question_id: int, template_id: int) -> AssessmentQuestion:
    question = db.query(AssessmentQuestion).filter(AssessmentQuestion.id == question_id).first()
    if not question or question.template_id != template_id:
        raise NotFoundError("Question not found")
    if question.type != QuestionType.CODING:
        raise DomainError("Question is not a coding question", code="not_coding_question")
    return question


def _load_test_cases(db: Session, question_id: int, include_hidden: bool) -> list[TestCaseSpec]:
    query = db.query(TestCase).filter(TestCase.question_id == question_id)
    if not include_hidden:
        query = query.filter(TestCase.is_hidden.is_(False))
    rows = query.order_by(TestCase.order_index.asc(), TestCase.id.asc()).all()
    return [
        TestCaseSpec(
            id=row.id,
            input=row.input or "",
            expected_output=row.expected_output or "",
            is_hidden=bool(row.is_hidden),
            points=float(row.points or 0.0),
            timeout_ms=row.timeout_ms,
            memory_limit_mb=row.memory_limit_mb,
        )
        for row in rows
    ]


def _upsert_code_answer(
    db: Session,
    attempt_id: int,
    question_id: int,
    *,
    language: str,
    points: float,
    is_correct: bool,
    execution_results: list[dict[str, Any]],
) -> AttemptAnswer:
    answer = (
        db.query(AttemptAnswer)
        .filter(AttemptAnswer.attempt_id == attempt_id, AttemptAnswer.question_id == question_id)
        .first()
    )
    if answer is None:
        answer = AttemptAnswer(attempt_id=attempt_id, question_id=question_id)
        db.add(answer)
    answer.selected_options = [CODE_SUBMITTED_SENTINEL]
    answer.language = language
    answer.points_earned = points
    answer.is_correct = is_correct
    answer.execution_results = execution_results
    answer.answered_at = utcnow()
    return answer


def run_code_for_attempt(
    db: Session,
    principal: Principal,
    *,
    attempt_id: int,
    question_id: int,
    code: str,
    language: str,
    is_submission: bool,
    client: Judge0Client,
    limiter: ExecutionRateLimiter,
) -> Dict[str, Any]:
    """Execute candidate code against a coding question's test cases.

    Dry runs use visible test cases only; submissions also run hidden ones,
    award points and record the answer. Every execution is stored as a
    CodeExecution row.
    """
    if len(code or "") > settings.MAX_CODE_CHARS:
        raise DomainError(
            f"Code exceeds the maximum of {settings.MAX_CODE_CHARS} characters",
            code="code_too_long",
        )

    attempt = get_attempt_for_candidate(db, attempt_id, principal)
    ensure_attempt_mutable(attempt)

    if not is_language_supported(language):
        raise DomainError(
            f"Unsupported language: {language}",
            code="unsupported_language",
            extra={"supportedLanguages": supported_languages()},
        )

    limiter.check(principal.user_id, attempt.id, question_id, is_submission)

    question = _load_question(db, question_id, attempt.template_id)
    if question.allowed_languages and language not in question.allowed_languages:
        raise DomainError(
            f"Language {language} is not allowed for this question",
            code="language_not_allowed",
            extra={"allowedLanguages": list(question.allowed_languages)},
        )

    test_cases = _load_test_cases(db, question.id, include_hidden=is_submission)
    if not test_cases:
        raise DomainError("No test cases configured for this question", code="no_test_cases")

    deadline = None
    if settings.CODE_EXECUTION_DEADLINE_SECONDS > 0:
        deadline = client.clock() + settings.CODE_EXECUTION_DEADLINE_SECONDS

    result = execute_test_cases(
        client,
        code,
        language,
        test_cases,
        default_timeout_ms=settings.CODE_EXECUTION_DEFAULT_TIMEOUT_MS,
        default_memory_mb=settings.CODE_EXECUTION_DEFAULT_MEMORY_MB,
        deadline=deadline,
    )
    points = compute_points(result) if is_submission else None
    output = truncate_text(result.output, MAX_OUTPUT_CHARS) or ""
    error = truncate_text(result.error, MAX_OUTPUT_CHARS)
    audit_results = stored_test_results(result.test_results)

    try:
        execution = CodeExecution(
            attempt_id=attempt.id,
            question_id=question.id,
            candidate_id=principal.user_id,
            code=code,
            language=language,
            status=result.status,
            output=output,
            error=error,
            execution_time_ms=result.execution_time_ms,
            memory_used_mb=result.memory_used_mb,
            test_results=audit_results,
            is_submission=is_submission,
            points_earned=points,
        )
        db.add(execution)
        if is_submission:
            _upsert_code_answer(
                db,
                attempt.id,
                question.id,
                language=language,
                points=points or 0.0,
                is_correct=result.success,
                execution_results=audit_results,
            )
        db.commit()
        db.refresh(execution)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store code execution attempt_id=%s question_id=%s", attempt.id, question.id)
        raise

    logger.info(
        "Code %s attempt_id=%s question_id=%s passed=%d/%d points=%s",
        "submitted" if is_submission else "run",
        attempt.id, question.id, result.passed_tests, result.total_tests, points,
    )

    payload: Dict[str, Any] = {
        "success": result.success,
        "status": result.status,
        "output": output,
        "error": error,
        "executionTimeMs": result.execution_time_ms,
        "memoryUsedMb": result.memory_used_mb,
        "testResults": redact_test_results(result.test_results, is_submission),
        "passedTests": result.passed_tests,
        "totalTests": result.total_tests,
    }
    if is_submission:
        payload["pointsEarned"] = points
    return {"success": True, "executionId": execution.id, "result": payload}
