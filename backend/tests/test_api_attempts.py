"""Candidate attempt API: start, resume, answer, submit, expiry."""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.components.attempts.repository import utcnow
from app.components.attempts.service import expire_overdue_attempts
from app.models import (
    AssessmentAttempt,
    AssessmentInvite,
    AssessmentQuestion,
    AssessmentType,
    AttemptAnswer,
    AttemptStatus,
    Company,
    CreditLedgerEntry,
    InviteStatus,
    LedgerStatus,
)
from tests.conftest import make_invite_setup, make_user, start_setup_attempt, token_headers


def _start(client, setup, token=None, template_id=None, headers=None):
    return client.post(
        f"/api/v1/assessments/{template_id or setup.template.id}/start",
        json={"token": token or setup.token},
        headers=headers or token_headers(setup.candidate),
    )


def _answer(client, setup, attempt_id, question_id, options, **extra):
    return client.post(
        f"/api/v1/attempts/{attempt_id}/answer",
        json={"questionId": question_id, "selectedOptions": options, **extra},
        headers=token_headers(setup.candidate),
    )


def _submit(client, setup, attempt_id):
    return client.post(f"/api/v1/attempts/{attempt_id}/submit", headers=token_headers(setup.candidate))


def _attempt(db, attempt_id):
    db.expire_all()
    return db.query(AssessmentAttempt).filter(AssessmentAttempt.id == attempt_id).one()


@pytest.fixture
def mcq_setup(db):
    return make_invite_setup(db, assessment_type=AssessmentType.MCQ)


class TestStart:
    def test_start_returns_questions_without_answers(self, client, db, mcq_setup):
        resp = _start(client, mcq_setup)
        assert resp.status_code == 200, resp.text
        data = resp.json()

        assert data["resumed"] is False
        assert data["attempt"]["status"] == "IN_PROGRESS"
        assert data["attempt"]["attemptNumber"] == 1
        assert data["attempt"]["expiresAt"] is not None
        assert data["template"]["timeLimitMinutes"] == 60
        assert [q["id"] for q in data["questions"]] == [q.id for q in mcq_setup.mcq_questions]
        for question in data["questions"]:
            for option in question["options"]:
                assert set(option) == {"id", "text"}
        assert data["savedAnswers"] == {}

        db.expire_all()
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == mcq_setup.invite_id).one()
        assert invite.status == InviteStatus.STARTED
        # the pending attempt created with the invite is the one that starts
        assert data["attempt"]["id"] == mcq_setup.issued["attempt"]["id"]

    def test_coding_questions_expose_only_visible_samples(self, client, db):
        setup = make_invite_setup(db, assessment_type=AssessmentType.CODING)

        data = _start(client, setup).json()

        coding = data["questions"][0]
        assert coding["type"] == "CODING"
        assert coding["sampleTestCases"] == [
            {"id": coding["sampleTestCases"][0]["id"], "input": "1 2", "expectedOutput": "3"}
        ]

    def test_start_twice_resumes_same_attempt(self, client, db, mcq_setup):
        first = _start(client, mcq_setup).json()
        _answer(client, mcq_setup, first["attempt"]["id"], mcq_setup.mcq_questions[0].id, ["b"])

        second = _start(client, mcq_setup).json()

        assert second["resumed"] is True
        assert second["attempt"]["id"] == first["attempt"]["id"]
        assert second["attempt"]["expiresAt"] == first["attempt"]["expiresAt"]
        assert second["savedAnswers"][str(mcq_setup.mcq_questions[0].id)]["selectedOptions"] == ["b"]

    def test_shuffled_order_is_stable_on_resume(self, client, db):
        setup = make_invite_setup(db, assessment_type=AssessmentType.MCQ, shuffle_questions=True)

        first = _start(client, setup).json()
        second = _start(client, setup).json()

        assert [q["id"] for q in first["questions"]] == [q["id"] for q in second["questions"]]
        assert sorted(q["id"] for q in first["questions"]) == sorted(q.id for q in setup.mcq_questions)

    def test_invalid_token(self, client, db, mcq_setup):
        resp = _start(client, mcq_setup, token="nope")
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_invite_token"

    def test_token_of_another_candidate(self, client, db, mcq_setup):
        stranger = make_user(db)
        resp = _start(client, mcq_setup, headers=token_headers(stranger))
        assert resp.status_code == 403

    def test_template_mismatch(self, client, db, mcq_setup):
        resp = _start(client, mcq_setup, template_id=mcq_setup.template.id + 999)
        assert resp.status_code == 400
        assert resp.json()["code"] == "invite_template_mismatch"

    @pytest.mark.parametrize(
        "status,code",
        [
            (InviteStatus.CANCELLED, "invite_cancelled"),
            (InviteStatus.EVALUATED, "invite_completed"),
            (InviteStatus.EXPIRED, "invite_expired"),
        ],
    )
    def test_dead_invites_cannot_start(self, client, db, mcq_setup, status, code):
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == mcq_setup.invite_id).one()
        invite.status = status
        db.commit()

        resp = _start(client, mcq_setup)
        assert resp.status_code == 400
        assert resp.json()["code"] == code

    def test_sent_invite_past_expiry_cannot_start(self, client, db, mcq_setup):
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == mcq_setup.invite_id).one()
        invite.expires_at = utcnow() - timedelta(hours=1)
        db.commit()

        resp = _start(client, mcq_setup)
        assert resp.status_code == 400
        assert resp.json()["code"] == "invite_expired"

    def test_timed_out_attempt_is_expired_and_retry_blocked(self, client, db, mcq_setup):
        first = _start(client, mcq_setup).json()
        attempt = _attempt(db, first["attempt"]["id"])
        attempt.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()

        resp = _start(client, mcq_setup)

        assert resp.status_code == 400
        assert resp.json()["code"] == "retry_not_allowed"
        assert _attempt(db, first["attempt"]["id"]).status == AttemptStatus.EXPIRED

    def test_retry_allowed_up_to_max_attempts(self, client, db):
        setup = make_invite_setup(db, assessment_type=AssessmentType.MCQ, allow_retry=True, max_attempts=2)
        first = _start(client, setup).json()
        attempt = _attempt(db, first["attempt"]["id"])
        attempt.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()

        second = _start(client, setup)
        assert second.status_code == 200, second.text
        assert second.json()["attempt"]["attemptNumber"] == 2
        assert second.json()["attempt"]["id"] != first["attempt"]["id"]

        attempt = _attempt(db, second.json()["attempt"]["id"])
        attempt.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
        third = _start(client, setup)
        assert third.status_code == 400
        assert third.json()["code"] == "max_attempts_reached"

    def test_expired_started_invite_cannot_begin_new_attempt(self, client, db):
        setup = make_invite_setup(db, assessment_type=AssessmentType.MCQ, allow_retry=True, max_attempts=3)
        first = _start(client, setup).json()
        attempt = _attempt(db, first["attempt"]["id"])
        attempt.status = AttemptStatus.EXPIRED
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == setup.invite_id).one()
        invite.expires_at = utcnow() - timedelta(days=1)
        db.commit()

        resp = _start(client, setup)

        assert resp.status_code == 400
        assert resp.json()["code"] == "invite_expired"
        db.expire_all()
        assert db.query(AssessmentAttempt).filter(AssessmentAttempt.invite_id == setup.invite_id).count() == 1

    def test_live_attempt_resumes_past_invite_expiry(self, client, db, mcq_setup):
        first = _start(client, mcq_setup).json()
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == mcq_setup.invite_id).one()
        invite.expires_at = utcnow() - timedelta(minutes=5)
        db.commit()

        resp = _start(client, mcq_setup)

        assert resp.status_code == 200, resp.text
        assert resp.json()["resumed"] is True
        assert resp.json()["attempt"]["id"] == first["attempt"]["id"]

    def test_recruiter_cannot_start(self, client, db, mcq_setup):
        resp = _start(client, mcq_setup, headers=token_headers(mcq_setup.recruiter))
        assert resp.status_code == 403


class TestAnswer:
    def test_answer_is_saved_without_correctness(self, client, db, mcq_setup):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]
        question = mcq_setup.mcq_questions[0]

        resp = _answer(client, mcq_setup, attempt_id, question.id, ["b"], timeSpentSeconds=20)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["success"] is True
        assert data["selectedOptions"] == ["b"]
        assert "isCorrect" not in data
        assert "pointsEarned" not in data

        db.expire_all()
        answer = db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt_id).one()
        assert answer.is_correct is True
        assert answer.points_earned == 1.0
        assert answer.time_spent_seconds == 20

    def test_changing_answer_updates_in_place(self, client, db, mcq_setup):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]
        question = mcq_setup.mcq_questions[0]

        first = _answer(client, mcq_setup, attempt_id, question.id, ["b"]).json()
        second = _answer(client, mcq_setup, attempt_id, question.id, ["a"]).json()

        assert first["answerId"] == second["answerId"]
        db.expire_all()
        answer = db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt_id).one()
        assert answer.is_correct is False
        assert db.query(AssessmentQuestion).filter(AssessmentQuestion.id == question.id).one().times_used == 1

    @pytest.mark.parametrize(
        "options,code",
        [
            ([], "empty_answer"),
            (["a", "b"], "single_choice_only"),
            (["z"], "invalid_option"),
        ],
    )
    def test_invalid_selections(self, client, db, mcq_setup, options, code):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]

        resp = _answer(client, mcq_setup, attempt_id, mcq_setup.mcq_questions[0].id, options)

        assert resp.status_code == 400
        assert resp.json()["code"] == code

    def test_coding_question_rejected(self, client, db):
        setup = make_invite_setup(db)
        attempt_id = _start(client, setup).json()["attempt"]["id"]

        resp = _answer(client, setup, attempt_id, setup.coding_questions[0].id, ["a"])

        assert resp.status_code == 400
        assert resp.json()["code"] == "not_mcq_question"

    def test_question_from_other_template_not_found(self, client, db, mcq_setup):
        other = make_invite_setup(db, assessment_type=AssessmentType.MCQ)
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]

        resp = _answer(client, mcq_setup, attempt_id, other.mcq_questions[0].id, ["b"])

        assert resp.status_code == 404

    def test_answer_after_time_expired(self, client, db, mcq_setup):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]
        attempt = _attempt(db, attempt_id)
        attempt.expires_at = utcnow() - timedelta(seconds=5)
        db.commit()

        resp = _answer(client, mcq_setup, attempt_id, mcq_setup.mcq_questions[0].id, ["b"])

        assert resp.status_code == 400
        assert resp.json()["code"] == "attempt_time_expired"

    def test_answer_on_other_candidates_attempt(self, client, db, mcq_setup):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]
        stranger = make_user(db)

        resp = client.post(
            f"/api/v1/attempts/{attempt_id}/answer",
            json={"questionId": mcq_setup.mcq_questions[0].id, "selectedOptions": ["b"]},
            headers=token_headers(stranger),
        )
        assert resp.status_code == 404
        # indistinguishable from an attempt that does not exist
        assert resp.json() == _submit(client, mcq_setup, 999999).json()


class TestSubmit:
    def test_submit_scores_and_charges(self, client, db, mcq_setup):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]
        _answer(client, mcq_setup, attempt_id, mcq_setup.mcq_questions[0].id, ["b"])
        _answer(client, mcq_setup, attempt_id, mcq_setup.mcq_questions[1].id, ["c"])

        resp = _submit(client, mcq_setup, attempt_id)
        assert resp.status_code == 200, resp.text
        data = resp.json()

        assert data["creditsCharged"] is True
        assert data["attempt"]["status"] == "EVALUATED"
        assert data["score"]["totalScore"] == 50
        assert data["score"]["passed"] is False
        assert data["score"]["sectionScores"] == {"Basics": 50}

        db.expire_all()
        company = db.query(Company).filter(Company.id == mcq_setup.company.id).one()
        # MCQ / MID costs 1.0 in total
        assert company.credits_available == Decimal("9.0")
        assert company.credits_reserved == Decimal("0")
        assert company.credits_used == Decimal("1.0")
        invite = db.query(AssessmentInvite).filter(AssessmentInvite.id == mcq_setup.invite_id).one()
        assert invite.status == InviteStatus.EVALUATED

    def test_second_submit_is_rejected_without_double_charge(self, client, db, mcq_setup):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]
        assert _submit(client, mcq_setup, attempt_id).status_code == 200

        again = _submit(client, mcq_setup, attempt_id)

        assert again.status_code == 400
        assert again.json()["code"] == "attempt_already_submitted"
        db.expire_all()
        assert db.query(Company).filter(Company.id == mcq_setup.company.id).one().credits_used == Decimal("1.0")

    def test_submit_stands_when_charge_fails(self, client, db):
        setup = make_invite_setup(db, credits="0.75", assessment_type=AssessmentType.MCQ)
        attempt_id = _start(client, setup).json()["attempt"]["id"]

        resp = _submit(client, setup, attempt_id)

        assert resp.status_code == 200
        assert resp.json()["creditsCharged"] is False
        assert _attempt(db, attempt_id).status == AttemptStatus.EVALUATED
        entry = db.query(CreditLedgerEntry).filter(CreditLedgerEntry.invite_id == setup.invite_id).one()
        assert entry.status == LedgerStatus.RESERVED

    def test_submit_after_time_expired_marks_attempt_expired(self, client, db, mcq_setup):
        attempt_id = _start(client, mcq_setup).json()["attempt"]["id"]
        attempt = _attempt(db, attempt_id)
        attempt.expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        resp = _submit(client, mcq_setup, attempt_id)

        assert resp.status_code == 400
        assert resp.json()["code"] == "attempt_time_expired"
        assert _attempt(db, attempt_id).status == AttemptStatus.EXPIRED
        entry = db.query(CreditLedgerEntry).filter(CreditLedgerEntry.invite_id == mcq_setup.invite_id).one()
        assert entry.status == LedgerStatus.RESERVED

    def test_unknown_attempt(self, client, db, mcq_setup):
        assert _submit(client, mcq_setup, 999999).status_code == 404


def test_expire_overdue_attempts_sweep(db):
    setup = make_invite_setup(db, assessment_type=AssessmentType.MCQ)
    attempt_id = start_setup_attempt(db, setup)["attempt"]["id"]
    assert expire_overdue_attempts(db) == 0

    attempt = _attempt(db, attempt_id)
    attempt.expires_at = utcnow() - timedelta(minutes=2)
    db.commit()

    assert expire_overdue_attempts(db) == 1
    assert _attempt(db, attempt_id).status == AttemptStatus.EXPIRED
    assert expire_overdue_attempts(db) == 0
