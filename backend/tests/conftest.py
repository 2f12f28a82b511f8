import os
# Override DATABASE_URL before any app imports to avoid PostgreSQL driver requirement
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
# Keep external integrations disabled by default for unit/API tests. Individual
# tests can opt-in by overriding dependencies.
os.environ["MVP_DISABLE_CELERY"] = "true"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["RESEND_API_KEY"] = ""
os.environ["SENTRY_DSN"] = ""
os.environ["CRON_SECRET"] = "test-cron-secret"

import base64
import json
import uuid
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.components.attempts.service import start_attempt
from app.components.code_execution.judge0_client import Judge0Client
from app.components.code_execution.rate_limit import (
    ExecutionRateLimiter,
    InMemoryRateLimitStore,
    RateLimitRule,
    get_rate_limiter,
)
from app.components.invites.service import issue_invite
from app.domains.assessments_runtime.candidate_runtime_routes import get_sandbox_client
from app.domains.assessments_runtime.recruiter_routes import get_invite_mailer
from app.main import app
from app.models import (
    Application,
    AssessmentDifficulty,
    AssessmentQuestion,
    AssessmentTemplate,
    AssessmentType,
    Company,
    Job,
    JobAssessment,
    QuestionType,
    TestCase,
    User,
)
from app.platform.config import settings
from app.platform.database import Base, get_db
from app.platform.security import ROLE_CANDIDATE, ROLE_RECRUITER, Principal, create_access_token

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Enable foreign key support for SQLite, and let SQLAlchemy own BEGIN so
# SAVEPOINTs (begin_nested) behave like they do on PostgreSQL.
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(engine, "begin")
def do_begin(conn):
    conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def fake_judge0():
    return FakeJudge0()


@pytest.fixture(scope="function")
def judge0_client(fake_judge0):
    return make_judge0_client(fake_judge0)


@pytest.fixture(scope="function")
def limiter():
    return make_limiter()


@pytest.fixture(scope="function")
def client(db, judge0_client, limiter):
    # requests reuse the test session: one SQLite connection, so a read held
    # open by the test never blocks a write made by the API
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sandbox_client] = lambda: judge0_client
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_invite_mailer] = lambda: None
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Fake Judge0 sandbox
# ---------------------------------------------------------------------------

def _b64(value: str | None) -> str | None:
    if value is None:
        return None
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _unb64(value: str | None) -> str:
    return base64.b64decode(value).decode("utf-8") if value else ""


class FakeJudge0:
    """In-memory Judge0 behind an httpx.MockTransport.

    By default code containing ``PASS`` prints the expected output (Accepted)
    and anything else prints ``wrong`` (Wrong Answer). ``pending_polls`` makes
    every submission report "Processing" that many times before finishing.
    """

    def __init__(self, pending_polls: int = 0):
        self.pending_polls = pending_polls
        self.submissions: dict[str, dict] = {}
        self.created: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.fail_create_for_stdin: set[str] = set()
        self.behavior = self.default_behavior

    @staticmethod
    def default_behavior(source: str, stdin: str, expected: str) -> dict:
        if "COMPILE_ERROR" in source:
            return {"status": {"id": 6, "description": "Compilation Error"}, "compile_output": _b64("syntax error")}
        if "PASS" in source:
            return {"status": {"id": 3, "description": "Accepted"}, "stdout": _b64(expected), "time": "0.012", "memory": 2048}
        return {"status": {"id": 4, "description": "Wrong Answer"}, "stdout": _b64("wrong"), "time": "0.010", "memory": 1024}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path.endswith("/submissions"):
            body = json.loads(request.content)
            stdin = _unb64(body.get("stdin"))
            if stdin in self.fail_create_for_stdin:
                return httpx.Response(500, json={"error": "sandbox exploded"})
            token = uuid.uuid4().hex
            decoded = {
                "source_code": _unb64(body.get("source_code")),
                "stdin": stdin,
                "expected_output": _unb64(body.get("expected_output")),
                "language_id": body.get("language_id"),
                "cpu_time_limit": body.get("cpu_time_limit"),
                "memory_limit": body.get("memory_limit"),
                "params": dict(request.url.params),
            }
            self.created.append(decoded)
            self.submissions[token] = {"decoded": decoded, "polls": 0}
            return httpx.Response(201, json={"token": token})
        if request.method == "GET" and "/submissions/" in request.url.path:
            token = request.url.path.rsplit("/", 1)[-1]
            entry = self.submissions.get(token)
            if entry is None:
                return httpx.Response(404, json={"error": "not found"})
            entry["polls"] += 1
            if entry["polls"] <= self.pending_polls:
                return httpx.Response(200, json={"status": {"id": 2, "description": "Processing"}})
            d = entry["decoded"]
            return httpx.Response(200, json=self.behavior(d["source_code"], d["stdin"], d["expected_output"]))
        return httpx.Response(404)


def make_judge0_client(fake: FakeJudge0, **overrides) -> Judge0Client:
    kwargs = {
        "timeout": 5.0,
        "poll_interval": 0.01,
        "max_poll_attempts": 5,
        "transport": httpx.MockTransport(fake.handler),
        "sleep": lambda _seconds: None,
    }
    kwargs.update(overrides)
    return Judge0Client("https://judge0.test", "test-key", "judge0.test", **kwargs)


def make_limiter(run_max: int | None = None, submit_max: int | None = None, clock=None) -> ExecutionRateLimiter:
    kwargs = {"clock": clock} if clock else {}
    return ExecutionRateLimiter(
        store=InMemoryRateLimitStore(),
        run_rule=RateLimitRule(run_max or settings.RATE_LIMIT_RUN_MAX, settings.RATE_LIMIT_RUN_WINDOW_SECONDS),
        submit_rule=RateLimitRule(submit_max or settings.RATE_LIMIT_SUBMIT_MAX, settings.RATE_LIMIT_SUBMIT_WINDOW_SECONDS),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Factory helpers: create test entities quickly and consistently
# ---------------------------------------------------------------------------

_counter = 0


def _unique_id() -> str:
    global _counter
    _counter += 1
    return f"{_counter}-{uuid.uuid4().hex[:8]}"


def make_company(db, credits="10", name=None) -> Company:
    company = Company(
        name=name or f"Company {_unique_id()}",
        credits_available=Decimal(str(credits)),
        credits_reserved=Decimal("0"),
        credits_used=Decimal("0"),
    )
    db.add(company)
    db.commit()
    db.refresh(company)
    return company


def make_user(db, role=ROLE_CANDIDATE, company=None, email=None, name="Test User") -> User:
    user = User(
        email=email or f"user-{_unique_id()}@test.com",
        name=name,
        role=role,
        company_id=company.id if company else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_recruiter(db, company) -> User:
    return make_user(db, role=ROLE_RECRUITER, company=company, name="Recruiter")


def make_template(
    db,
    company=None,
    assessment_type=AssessmentType.CODING,
    difficulty=AssessmentDifficulty.MID,
    **overrides,
) -> AssessmentTemplate:
    template = AssessmentTemplate(
        company_id=company.id if company else None,
        title=overrides.pop("title", f"Template {_unique_id()}"),
        type=assessment_type,
        difficulty=difficulty,
        time_limit_minutes=overrides.pop("time_limit_minutes", 60),
        passing_score=overrides.pop("passing_score", 70),
        **overrides,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def make_mcq_question(db, template, correct=("b",), options=None, section=None, order_index=0, **overrides) -> AssessmentQuestion:
    options = options or [
        {"id": "a", "text": "Option A"},
        {"id": "b", "text": "Option B"},
        {"id": "c", "text": "Option C"},
    ]
    options = [{**o, "isCorrect": o["id"] in correct} for o in options]
    question = AssessmentQuestion(
        template_id=template.id,
        type=QuestionType.MCQ,
        section=section,
        question_text=overrides.pop("question_text", "Pick one"),
        options=options,
        order_index=order_index,
        **overrides,
    )
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def make_coding_question(db, template, cases=None, section=None, order_index=0, **overrides) -> AssessmentQuestion:
    """``cases`` is a list of (input, expected_output, is_hidden, points)."""
    cases = cases if cases is not None else [("1 2", "3", False, 1.0), ("5 5", "10", True, 2.0)]
    question = AssessmentQuestion(
        template_id=template.id,
        type=QuestionType.CODING,
        section=section,
        question_text=overrides.pop("question_text", "Add two numbers"),
        order_index=order_index,
        **overrides,
    )
    db.add(question)
    db.flush()
    for index, (stdin, expected, hidden, points) in enumerate(cases):
        db.add(
            TestCase(
                question_id=question.id,
                input=stdin,
                expected_output=expected,
                is_hidden=hidden,
                points=points,
                order_index=index,
            )
        )
    db.commit()
    db.refresh(question)
    return question


def make_job_with_application(db, company, template, candidate) -> tuple[Job, JobAssessment, Application]:
    job = Job(company_id=company.id, title=f"Engineer {_unique_id()}")
    db.add(job)
    db.flush()
    assignment = JobAssessment(job_id=job.id, template_id=template.id)
    application = Application(job_id=job.id, candidate_id=candidate.id)
    db.add_all([assignment, application])
    db.commit()
    db.refresh(job)
    db.refresh(assignment)
    db.refresh(application)
    return job, assignment, application


def token_headers(user: User) -> dict:
    token = create_access_token(user.id, user.role, company_id=user.company_id)
    return {"Authorization": f"Bearer {token}"}


def principal_for(user: User) -> Principal:
    return Principal(user_id=user.id, role=user.role, company_id=user.company_id)


def make_invite_setup(
    db,
    *,
    credits="10",
    assessment_type=AssessmentType.MIXED,
    difficulty=AssessmentDifficulty.MID,
    issue=True,
    **template_overrides,
) -> SimpleNamespace:
    """Company, recruiter, candidate, a template with questions and an issued invite.

    MCQ templates get two MCQ questions, CODING one coding question and MIXED
    one of each.
    """
    company = make_company(db, credits=credits)
    recruiter = make_recruiter(db, company)
    candidate = make_user(db, name="Cand Idate")
    template = make_template(db, company, assessment_type=assessment_type, difficulty=difficulty, **template_overrides)

    mcq_questions = []
    coding_questions = []
    if assessment_type in (AssessmentType.MCQ, AssessmentType.MIXED):
        mcq_questions.append(make_mcq_question(db, template, section="Basics", order_index=0))
        if assessment_type == AssessmentType.MCQ:
            mcq_questions.append(make_mcq_question(db, template, correct=("a",), section="Basics", order_index=1))
    if assessment_type in (AssessmentType.CODING, AssessmentType.MIXED):
        coding_questions.append(make_coding_question(db, template, section="Coding", order_index=5))

    job, assignment, application = make_job_with_application(db, company, template, candidate)
    setup = SimpleNamespace(
        company=company,
        recruiter=recruiter,
        candidate=candidate,
        template=template,
        job=job,
        assignment=assignment,
        application=application,
        mcq_questions=mcq_questions,
        coding_questions=coding_questions,
        issued=None,
        invite_id=None,
        token=None,
    )
    if issue:
        issued = issue_invite(db, principal_for(recruiter), application.id)
        setup.issued = issued
        setup.invite_id = issued["invite"]["id"]
        setup.token = issued["inviteUrl"].split("token=", 1)[1]
    return setup


def start_setup_attempt(db, setup) -> dict:
    """Start the candidate's attempt for an issued setup and return the start payload."""
    return start_attempt(db, principal_for(setup.candidate), setup.template.id, setup.token)
