"""Proctoring event ingestion and severity aggregation.

Events are append-only and deduplicated by the client's ``eventId``. Counter
columns on the attempt are only ever changed with ``col = col + n`` so two
concurrent batches never lose each other's increments, and the severity is
recomputed from the stored totals after every batch.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.attempt import AssessmentAttempt, ProctoringSeverity
from ...models.proctoring_event import ProctoringEvent
from ...platform.config import settings
from ...platform.errors import DomainError
from ...platform.security import Principal
from ..attempts.repository import ensure_utc, get_attempt_for_candidate
from ..attempts.state import ensure_attempt_mutable
from .signature import client_signature, ip_prefix

logger = logging.getLogger(__name__)

# client event type -> attempt counter column
EVENT_COUNTERS: dict[str, str] = {
    "TAB_SWITCH": "tab_switches",
    "VISIBILITY_HIDDEN": "visibility_hidden",
    "COPY": "copy_attempts",
    "PASTE": "paste_attempts",
    "RIGHT_CLICK": "right_clicks",
    "BLUR": "focus_loss",
    "PAGE_HIDE": "page_hides",
}

COUNT_KEYS: dict[str, str] = {
    "tab_switches": "tabSwitches",
    "visibility_hidden": "visibilityHidden",
    "copy_attempts": "copyAttempts",
    "paste_attempts": "pasteAttempts",
    "right_clicks": "rightClicks",
    "focus_loss": "focusLoss",
    "page_hides": "pageHides",
}

MAX_EVENTS_PER_BATCH = 100
MAX_META_CHARS = 1000
MAX_SEVERITY_SCORE = 9999
SUSPICIOUS_THRESHOLD = 10
CRITICAL_THRESHOLD = 20


def severity_score(counts: Mapping[str, int], multi_session: bool, weights: Mapping[str, int] | None = None) -> int:
    weights = weights or settings.proctoring_severity_weights
    score = sum(int(counts.get(column) or 0) * int(weight) for column, weight in weights.items() if column != "multi_session")
    if multi_session:
        score += int(weights.get("multi_session", 0))
    return max(0, min(MAX_SEVERITY_SCORE, score))


def severity_level(score: int) -> ProctoringSeverity:
    if score >= CRITICAL_THRESHOLD:
        return ProctoringSeverity.CRITICAL
    if score >= SUSPICIOUS_THRESHOLD:
        return ProctoringSeverity.SUSPICIOUS
    return ProctoringSeverity.NORMAL


def _clean_meta(meta: Any) -> Optional[dict]:
    if not isinstance(meta, dict):
        return None
    try:
        encoded = json.dumps(meta, default=str)
    except (TypeError, ValueError):
        return None
    return meta if len(encoded) <= MAX_META_CHARS else None


def _parse_client_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value:
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def _normalize_events(events: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    accepted: list[dict[str, Any]] = []
    for raw in list(events)[:MAX_EVENTS_PER_BATCH]:
        event_type = str(raw.get("event") or raw.get("type") or "").strip().upper()
        if event_type not in EVENT_COUNTERS:
            continue
        event_id = raw.get("eventId") or raw.get("event_id")
        accepted.append(
            {
                "type": event_type,
                "event_id": str(event_id)[:128] if event_id else None,
                "meta": _clean_meta(raw.get("meta")),
                "client_ts": _parse_client_ts(raw.get("ts") or raw.get("timestamp")),
            }
        )
    return accepted


def _counts(attempt: AssessmentAttempt) -> dict[str, int]:
    return {column: int(getattr(attempt, column) or 0) for column in EVENT_COUNTERS.values()}


def _counts_payload(counts: Mapping[str, int]) -> dict[str, int]:
    return {COUNT_KEYS[column]: value for column, value in counts.items()}


def _track_signature(db: Session, attempt_id: int, signature: str) -> None:
    query = db.query(AssessmentAttempt).filter(AssessmentAttempt.id == attempt_id)
    adopted = (
        db.query(AssessmentAttempt)
        .filter(AssessmentAttempt.id == attempt_id, AssessmentAttempt.first_client_sig.is_(None))
        .update({AssessmentAttempt.first_client_sig: signature}, synchronize_session=False)
    )
    if not adopted:
        # multi_session is sticky, only ever set to true
        query.filter(AssessmentAttempt.first_client_sig != signature).update(
            {AssessmentAttempt.multi_session: True}, synchronize_session=False
        )
    query.update({AssessmentAttempt.last_client_sig: signature}, synchronize_session=False)


def _insert_new_events(
    db: Session,
    attempt: AssessmentAttempt,
    events: list[dict[str, Any]],
    *,
    signature: str,
    prefix: str,
    user_agent: Optional[str],
) -> dict[str, int]:
    """Insert events not seen before and return per-counter increments."""
    ids = {e["event_id"] for e in events if e["event_id"]}
    seen: set[str] = set()
    if ids:
        seen = {
            row[0]
            for row in db.query(ProctoringEvent.event_id)
            .filter(ProctoringEvent.attempt_id == attempt.id, ProctoringEvent.event_id.in_(ids))
            .all()
        }

    increments: dict[str, int] = {}
    for event in events:
        event_id = event["event_id"]
        if event_id and event_id in seen:
            continue
        row = ProctoringEvent(
            attempt_id=attempt.id,
            candidate_id=attempt.candidate_id,
            type=event["type"],
            meta=event["meta"],
            event_id=event_id,
            client_sig=signature,
            ip_prefix=prefix or None,
            user_agent=(user_agent or "")[:512] or None,
            client_ts=event["client_ts"],
        )
        try:
            with db.begin_nested():
                db.add(row)
        except IntegrityError:
            # a concurrent batch stored the same eventId first
            logger.info("Duplicate proctoring event attempt_id=%s event_id=%s", attempt.id, event_id)
            continue
        if event_id:
            seen.add(event_id)
        column = EVENT_COUNTERS[event["type"]]
        increments[column] = increments.get(column, 0) + 1
    return increments


def record_proctoring_events(
    db: Session,
    principal: Principal,
    attempt_id: int,
    events: Iterable[Mapping[str, Any]],
    *,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """Store a batch of integrity events and return the attempt's current flags."""
    attempt = get_attempt_for_candidate(db, attempt_id, principal)
    ensure_attempt_mutable(attempt)

    normalized = _normalize_events(events)
    if not normalized:
        raise DomainError("No valid proctoring events", code="no_valid_events")

    signature = client_signature(user_agent, ip)
    try:
        _track_signature(db, attempt.id, signature)
        increments = _insert_new_events(
            db, attempt, normalized, signature=signature, prefix=ip_prefix(ip), user_agent=user_agent
        )
        if increments:
            db.query(AssessmentAttempt).filter(AssessmentAttempt.id == attempt.id).update(
                {getattr(AssessmentAttempt, column): getattr(AssessmentAttempt, column) + n for column, n in increments.items()},
                synchronize_session=False,
            )

        db.refresh(attempt)
        counts = _counts(attempt)
        score = severity_score(counts, bool(attempt.multi_session))
        level = severity_level(score)
        db.query(AssessmentAttempt).filter(AssessmentAttempt.id == attempt.id).update(
            {AssessmentAttempt.severity_score: score, AssessmentAttempt.severity: level},
            synchronize_session=False,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    received = sum(increments.values())
    if level != ProctoringSeverity.NORMAL:
        logger.warning(
            "Proctoring severity %s attempt_id=%s score=%s multi_session=%s",
            level.value, attempt.id, score, bool(attempt.multi_session),
        )
    return {
        "success": True,
        "flags": {
            "counts": _counts_payload(counts),
            "severity": level.value,
            "severityScore": score,
            "multiSession": bool(attempt.multi_session),
        },
        "received": received,
    }
