"""Proctoring flags API."""

from datetime import timedelta

import pytest

from app.components.attempts.repository import utcnow
from app.models import AssessmentAttempt, ProctoringEvent
from tests.conftest import make_invite_setup, start_setup_attempt, token_headers


@pytest.fixture
def started(db):
    setup = make_invite_setup(db)
    setup.attempt_id = start_setup_attempt(db, setup)["attempt"]["id"]
    setup.headers = token_headers(setup.candidate)
    return setup


def _flags(client, setup, body, **headers):
    return client.patch(
        f"/api/v1/attempts/{setup.attempt_id}/flags",
        json=body,
        headers={**setup.headers, **headers},
    )


def _attempt(db, attempt_id):
    db.expire_all()
    return db.query(AssessmentAttempt).filter(AssessmentAttempt.id == attempt_id).one()


def test_batch_updates_counters(client, db, started):
    resp = _flags(
        client,
        started,
        {"events": [{"event": "TAB_SWITCH", "eventId": "t1"}, {"event": "COPY", "eventId": "c1"}]},
    )

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["received"] == 2
    assert body["flags"]["counts"]["tabSwitches"] == 1
    assert body["flags"]["counts"]["copyAttempts"] == 1
    assert body["flags"]["severityScore"] == 5
    assert body["flags"]["severity"] == "NORMAL"
    assert resp.headers["Cache-Control"] == "no-store"


def test_single_event_body_is_accepted(client, db, started):
    resp = _flags(client, started, {"event": "PASTE", "eventId": "p1", "meta": {"length": 12}})

    assert resp.status_code == 200, resp.text
    assert resp.json()["flags"]["counts"]["pasteAttempts"] == 1
    db.expire_all()
    assert db.query(ProctoringEvent).filter(ProctoringEvent.attempt_id == started.attempt_id).count() == 1


def test_expired_attempt_keeps_counters_unchanged(client, db, started):
    attempt = _attempt(db, started.attempt_id)
    attempt.expires_at = utcnow() - timedelta(seconds=5)
    db.commit()

    resp = _flags(client, started, {"events": [{"event": "TAB_SWITCH", "eventId": "late"}]})

    assert resp.status_code == 400
    assert resp.json()["code"] == "attempt_time_expired"
    assert _attempt(db, started.attempt_id).tab_switches == 0
    assert db.query(ProctoringEvent).count() == 0


def test_two_batches_add_both_increments(client, db, started):
    base = _attempt(db, started.attempt_id).tab_switches

    _flags(client, started, {"events": [{"event": "TAB_SWITCH", "eventId": "batch-1"}]})
    _flags(client, started, {"events": [{"event": "TAB_SWITCH", "eventId": "batch-2"}]})

    assert _attempt(db, started.attempt_id).tab_switches == base + 2


def test_replayed_batch_is_idempotent(client, db, started):
    batch = {"events": [{"event": "RIGHT_CLICK", "eventId": "r1"}]}

    _flags(client, started, batch)
    again = _flags(client, started, batch).json()

    assert again["received"] == 0
    assert again["flags"]["counts"]["rightClicks"] == 1


def test_forwarded_ip_from_other_network_sets_multi_session(client, db, started):
    first = _flags(client, started, {"event": "BLUR"}, **{"X-Forwarded-For": "203.0.113.10"}).json()
    same_net = _flags(client, started, {"event": "BLUR"}, **{"X-Forwarded-For": "203.0.113.99, 10.0.0.1"}).json()
    other = _flags(client, started, {"event": "BLUR"}, **{"X-Forwarded-For": "198.51.100.4"}).json()

    assert first["flags"]["multiSession"] is False
    assert same_net["flags"]["multiSession"] is False
    assert other["flags"]["multiSession"] is True
    assert _attempt(db, started.attempt_id).multi_session is True


def test_unknown_event_types_only(client, started):
    resp = _flags(client, started, {"events": [{"event": "SCREENSHOT"}]})

    assert resp.status_code == 400
    assert resp.json()["code"] == "no_valid_events"


def test_recruiter_cannot_report_events(client, started):
    resp = client.patch(
        f"/api/v1/attempts/{started.attempt_id}/flags",
        json={"event": "BLUR"},
        headers=token_headers(started.recruiter),
    )

    assert resp.status_code == 403


def test_legacy_type_key_is_still_read(client, started):
    resp = _flags(client, started, {"events": [{"type": "COPY", "eventId": "legacy-1"}]})

    assert resp.status_code == 200, resp.text
    assert resp.json()["flags"]["counts"]["copyAttempts"] == 1
