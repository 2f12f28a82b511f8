"""Attempt status transitions and the lazy time-expiry guard.

NOT_STARTED -> IN_PROGRESS -> SUBMITTED -> EVALUATED, and any open state -> EXPIRED.
Expiry is never driven by a timer; every mutating call compares ``now`` with
``expires_at`` through :func:`ensure_attempt_mutable`.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from ...models.attempt import AssessmentAttempt, AttemptStatus
from ...platform.errors import StateError
from .repository import ensure_utc, utcnow

ATTEMPT_NOT_IN_PROGRESS = "attempt_not_in_progress"
ATTEMPT_TIME_EXPIRED = "attempt_time_expired"
ATTEMPT_ALREADY_SUBMITTED = "attempt_already_submitted"

ALLOWED_TRANSITIONS: dict[AttemptStatus, set[AttemptStatus]] = {
    AttemptStatus.NOT_STARTED: {AttemptStatus.IN_PROGRESS, AttemptStatus.EXPIRED},
    AttemptStatus.IN_PROGRESS: {AttemptStatus.SUBMITTED, AttemptStatus.EXPIRED},
    AttemptStatus.SUBMITTED: {AttemptStatus.EVALUATED},
    AttemptStatus.EVALUATED: set(),
    AttemptStatus.EXPIRED: set(),
}


def can_transition(current: AttemptStatus, target: AttemptStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def transition(attempt: AssessmentAttempt, target: AttemptStatus) -> None:
    current = attempt.status or AttemptStatus.NOT_STARTED
    if not can_transition(current, target):
        raise StateError(
            f"Cannot move attempt from {current.value} to {target.value}",
            code=ATTEMPT_NOT_IN_PROGRESS,
        )
    attempt.status = target


def is_time_expired(attempt: AssessmentAttempt, now: datetime | None = None) -> bool:
    expires_at = ensure_utc(attempt.expires_at)
    return expires_at is not None and (now or utcnow()) > expires_at


def ensure_attempt_mutable(attempt: AssessmentAttempt, now: datetime | None = None) -> None:
    """Reject mutations unless the attempt is IN_PROGRESS and inside its time window."""
    if attempt.status in (AttemptStatus.SUBMITTED, AttemptStatus.EVALUATED):
        raise StateError("Attempt was already submitted", code=ATTEMPT_ALREADY_SUBMITTED)
    if attempt.status != AttemptStatus.IN_PROGRESS:
        raise StateError("Attempt is not in progress", code=ATTEMPT_NOT_IN_PROGRESS)
    if is_time_expired(attempt, now):
        raise StateError("Time expired", code=ATTEMPT_TIME_EXPIRED)


def begin(attempt: AssessmentAttempt, time_limit_minutes: int, now: datetime | None = None) -> None:
    """NOT_STARTED -> IN_PROGRESS with the attempt's deadline fixed from the template."""
    now = now or utcnow()
    transition(attempt, AttemptStatus.IN_PROGRESS)
    attempt.started_at = now
    attempt.expires_at = now + timedelta(minutes=int(time_limit_minutes or 0))
