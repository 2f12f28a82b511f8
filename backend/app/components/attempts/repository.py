"""Attempt DB helpers, ownership checks, and serialization."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy.orm import Session

from ...models.attempt import AssessmentAttempt
from ...platform.errors import NotFoundError
from ...platform.security import Principal


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return datetime as timezone-aware UTC for comparisons."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def isoformat(dt: datetime | None) -> str | None:
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------

def get_attempt_for_candidate(
    db: Session,
    attempt_id: int,
    principal: Principal,
    *,
    for_update: bool = False,
) -> AssessmentAttempt:
    """Load an attempt owned by the calling candidate.

    Someone else's attempt raises the same NotFoundError as a missing one.
    """
    query = db.query(AssessmentAttempt).filter(AssessmentAttempt.id == attempt_id)
    if for_update:
        query = query.with_for_update()
    attempt = query.first()
    if not attempt or attempt.candidate_id != principal.user_id:
        raise NotFoundError("Attempt not found")
    return attempt


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def attempt_to_dict(attempt: AssessmentAttempt) -> Dict[str, Any]:
    return {
        "id": attempt.id,
        "status": attempt.status.value if attempt.status else None,
        "applicationId": attempt.application_id,
        "candidateId": attempt.candidate_id,
        "templateId": attempt.template_id,
        "inviteId": attempt.invite_id,
        "attemptNumber": attempt.attempt_number,
        "startedAt": isoformat(attempt.started_at),
        "expiresAt": isoformat(attempt.expires_at),
        "submittedAt": isoformat(attempt.submitted_at),
        "totalScore": attempt.total_score,
        "passed": attempt.passed,
        "sectionScores": attempt.section_scores,
    }
