from datetime import timedelta

import pytest

from app.components.attempts.repository import utcnow
from app.components.proctoring.service import (
    MAX_EVENTS_PER_BATCH,
    record_proctoring_events,
    severity_level,
    severity_score,
)
from app.components.proctoring.signature import client_signature, ip_prefix
from app.models import AssessmentAttempt, ProctoringEvent, ProctoringSeverity
from app.platform.errors import DomainError, NotFoundError, StateError
from tests.conftest import make_invite_setup, make_user, principal_for, start_setup_attempt

UA = "Mozilla/5.0 (X11; Linux x86_64)"


@pytest.fixture
def started(db):
    setup = make_invite_setup(db)
    payload = start_setup_attempt(db, setup)
    setup.attempt_id = payload["attempt"]["id"]
    setup.principal = principal_for(setup.candidate)
    return setup


def _attempt(db, attempt_id):
    db.expire_all()
    return db.query(AssessmentAttempt).filter(AssessmentAttempt.id == attempt_id).one()


def test_ip_prefix_ipv4_and_ipv6():
    assert ip_prefix("203.0.113.77") == "203.0.113.0/24"
    assert ip_prefix("2001:db8:abcd:12:1:2:3:4") == "2001:db8:abcd:12::/64"
    assert ip_prefix("not-an-ip") == ""
    assert ip_prefix(None) == ""


def test_signature_ignores_host_part_of_ip():
    assert client_signature(UA, "10.0.0.1") == client_signature(UA, "10.0.0.200")
    assert client_signature(UA, "10.0.0.1") != client_signature(UA, "10.0.1.1")
    assert client_signature(UA, "10.0.0.1") != client_signature("curl/8", "10.0.0.1")


def test_severity_is_additive_and_clamped():
    weights = {"tab_switches": 2, "copy_attempts": 3, "multi_session": 8}
    counts = {"tab_switches": 2, "copy_attempts": 1, "right_clicks": 50}

    assert severity_score(counts, False, weights) == 7
    assert severity_score(counts, True, weights) == 15
    assert severity_score({"tab_switches": 10**6}, False, weights) == 9999
    assert severity_level(9) == ProctoringSeverity.NORMAL
    assert severity_level(10) == ProctoringSeverity.SUSPICIOUS
    assert severity_level(20) == ProctoringSeverity.CRITICAL


def test_same_counts_give_same_severity():
    counts = {"tab_switches": 3, "paste_attempts": 2, "focus_loss": 4}
    assert severity_score(counts, True) == severity_score(dict(counts), True)


def test_events_increment_counters_and_compute_severity(db, started):
    events = [
        {"event": "TAB_SWITCH", "eventId": "e1"},
        {"event": "tab_switch", "eventId": "e2"},
        {"event": "PASTE", "eventId": "e3", "meta": {"length": 42}},
        {"event": "UNKNOWN", "eventId": "e4"},
    ]

    result = record_proctoring_events(db, started.principal, started.attempt_id, events, ip="10.0.0.5", user_agent=UA)

    assert result["success"] is True
    assert result["received"] == 3
    flags = result["flags"]
    assert flags["counts"]["tabSwitches"] == 2
    assert flags["counts"]["pasteAttempts"] == 1
    assert flags["counts"]["copyAttempts"] == 0
    # 2 * 2 + 1 * 3
    assert flags["severityScore"] == 7
    assert flags["severity"] == "NORMAL"
    assert flags["multiSession"] is False

    stored = db.query(ProctoringEvent).filter(ProctoringEvent.attempt_id == started.attempt_id).all()
    assert len(stored) == 3
    assert {e.ip_prefix for e in stored} == {"10.0.0.0/24"}
    paste = next(e for e in stored if e.type == "PASTE")
    assert paste.meta == {"length": 42}


def test_replayed_event_ids_are_not_counted_twice(db, started):
    batch = [{"event": "COPY", "eventId": "copy-1"}, {"event": "COPY", "eventId": "copy-2"}]
    record_proctoring_events(db, started.principal, started.attempt_id, batch, ip="10.0.0.5", user_agent=UA)

    replay = record_proctoring_events(
        db, started.principal, started.attempt_id,
        batch + [{"event": "COPY", "eventId": "copy-3"}, {"event": "COPY", "eventId": "copy-3"}],
        ip="10.0.0.5", user_agent=UA,
    )

    assert replay["received"] == 1
    assert replay["flags"]["counts"]["copyAttempts"] == 3
    assert db.query(ProctoringEvent).filter(ProctoringEvent.attempt_id == started.attempt_id).count() == 3


def test_events_without_ids_always_count(db, started):
    record_proctoring_events(db, started.principal, started.attempt_id, [{"event": "BLUR"}], ip=None, user_agent=UA)
    result = record_proctoring_events(db, started.principal, started.attempt_id, [{"event": "BLUR"}], ip=None, user_agent=UA)

    assert result["flags"]["counts"]["focusLoss"] == 2


def test_sequential_batches_accumulate(db, started):
    base = _attempt(db, started.attempt_id).tab_switches
    for event_id in ("a", "b"):
        record_proctoring_events(
            db, started.principal, started.attempt_id, [{"event": "TAB_SWITCH", "eventId": event_id}],
            ip="10.0.0.5", user_agent=UA,
        )

    assert _attempt(db, started.attempt_id).tab_switches == base + 2


def test_second_client_signature_sets_multi_session(db, started):
    first = record_proctoring_events(db, started.principal, started.attempt_id, [{"event": "BLUR"}], ip="10.0.0.5", user_agent=UA)
    assert first["flags"]["multiSession"] is False

    other = record_proctoring_events(
        db, started.principal, started.attempt_id, [{"event": "BLUR"}], ip="192.168.1.9", user_agent=UA
    )
    assert other["flags"]["multiSession"] is True
    # multi-session weight (8) plus two blur events (1 each)
    assert other["flags"]["severityScore"] == 10
    assert other["flags"]["severity"] == "SUSPICIOUS"

    # going back to the first client does not clear the flag
    back = record_proctoring_events(db, started.principal, started.attempt_id, [{"event": "BLUR"}], ip="10.0.0.9", user_agent=UA)
    assert back["flags"]["multiSession"] is True

    attempt = _attempt(db, started.attempt_id)
    assert attempt.first_client_sig == client_signature(UA, "10.0.0.5")
    assert attempt.last_client_sig == client_signature(UA, "10.0.0.9")


def test_batch_is_capped_and_oversized_meta_dropped(db, started):
    events = [{"event": "RIGHT_CLICK", "meta": {"blob": "x" * 5000}} for _ in range(MAX_EVENTS_PER_BATCH + 20)]

    result = record_proctoring_events(db, started.principal, started.attempt_id, events, ip=None, user_agent=UA)

    assert result["received"] == MAX_EVENTS_PER_BATCH
    assert result["flags"]["counts"]["rightClicks"] == MAX_EVENTS_PER_BATCH
    assert result["flags"]["severityScore"] == MAX_EVENTS_PER_BATCH
    assert db.query(ProctoringEvent).filter(ProctoringEvent.meta.isnot(None)).count() == 0


def test_batch_with_only_unknown_events_is_rejected(db, started):
    with pytest.raises(DomainError) as exc:
        record_proctoring_events(db, started.principal, started.attempt_id, [{"event": "SCREENSHOT"}])
    assert exc.value.code == "no_valid_events"


def test_expired_attempt_rejects_events_and_keeps_counters(db, started):
    attempt = _attempt(db, started.attempt_id)
    attempt.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(StateError) as exc:
        record_proctoring_events(db, started.principal, started.attempt_id, [{"event": "TAB_SWITCH"}])

    assert exc.value.code == "attempt_time_expired"
    assert _attempt(db, started.attempt_id).tab_switches == 0
    assert db.query(ProctoringEvent).count() == 0


def test_other_candidate_cannot_report_events(db, started):
    intruder = make_user(db)

    with pytest.raises(NotFoundError):
        record_proctoring_events(db, principal_for(intruder), started.attempt_id, [{"event": "TAB_SWITCH"}])
