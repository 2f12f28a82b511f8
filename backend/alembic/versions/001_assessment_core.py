"""assessment core schema: companies, jobs, templates, invites, attempts, ledger, proctoring

Revision ID: 001_assessment_core
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "001_assessment_core"
down_revision = None
branch_labels = None
depends_on = None

CREDIT = sa.Numeric(12, 2)

assessment_type = sa.Enum("MCQ", "CODING", "MIXED", name="assessmenttype")
assessment_difficulty = sa.Enum("JUNIOR", "MID", "SENIOR", name="assessmentdifficulty")
question_type = sa.Enum("MCQ", "CODING", name="questiontype")
invite_status = sa.Enum("SENT", "STARTED", "EVALUATED", "EXPIRED", "CANCELLED", name="invitestatus")
attempt_status = sa.Enum("NOT_STARTED", "IN_PROGRESS", "SUBMITTED", "EVALUATED", "EXPIRED", name="attemptstatus")
proctoring_severity = sa.Enum("NORMAL", "SUSPICIOUS", "CRITICAL", name="proctoringseverity")
ledger_status = sa.Enum("RESERVED", "CHARGED", "REFUNDED", name="ledgerstatus")

OPEN_ATTEMPT_WHERE = sa.text("status IN ('NOT_STARTED', 'IN_PROGRESS') AND invite_id IS NOT NULL")
OPEN_RESERVATION_WHERE = sa.text("status = 'RESERVED'")


def _timestamps(updated: bool = False) -> list:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    return cols


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("credits_available", CREDIT, nullable=False, server_default="0"),
        sa.Column("credits_reserved", CREDIT, nullable=False, server_default="0"),
        sa.Column("credits_used", CREDIT, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("credits_available >= 0", name="ck_company_credits_available_non_negative"),
        sa.CheckConstraint("credits_reserved >= 0", name="ck_company_credits_reserved_non_negative"),
        sa.CheckConstraint("credits_used >= 0", name="ck_company_credits_used_non_negative"),
    )
    op.create_index("ix_companies_id", "companies", ["id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="CANDIDATE"),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_company_id", "users", ["company_id"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_jobs_id", "jobs", ["id"])
    op.create_index("ix_jobs_company_id", "jobs", ["company_id"])

    op.create_table(
        "assessment_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("type", assessment_type, nullable=False),
        sa.Column("difficulty", assessment_difficulty, nullable=False),
        sa.Column("time_limit_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("passing_score", sa.Integer(), nullable=False, server_default="70"),
        sa.Column("sections", sa.JSON(), nullable=True),
        sa.Column("penalize_wrong", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allow_retry", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("shuffle_questions", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_assessment_templates_id", "assessment_templates", ["id"])
    op.create_index("ix_assessment_templates_company_id", "assessment_templates", ["company_id"])

    op.create_table(
        "job_assessments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("assessment_templates.id"), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_score", sa.Float(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("job_id", "template_id", name="uq_job_assessment_template"),
    )
    op.create_index("ix_job_assessments_id", "job_assessments", ["id"])
    op.create_index("ix_job_assessments_job_id", "job_assessments", ["job_id"])
    op.create_index("ix_job_assessments_template_id", "job_assessments", ["template_id"])

    op.create_table(
        "applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("candidate_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="applied"),
        *_timestamps(),
        sa.UniqueConstraint("job_id", "candidate_id", name="uq_application_job_candidate"),
    )
    op.create_index("ix_applications_id", "applications", ["id"])
    op.create_index("ix_applications_job_id", "applications", ["job_id"])
    op.create_index("ix_applications_candidate_id", "applications", ["candidate_id"])

    op.create_table(
        "assessment_questions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("assessment_templates.id"), nullable=False),
        sa.Column("type", question_type, nullable=False),
        sa.Column("section", sa.String(), nullable=True),
        sa.Column("difficulty", sa.String(), nullable=True),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("code_snippet", sa.Text(), nullable=True),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("allow_multiple", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allowed_languages", sa.JSON(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_assessment_questions_id", "assessment_questions", ["id"])
    op.create_index("ix_assessment_questions_template_id", "assessment_questions", ["template_id"])

    op.create_table(
        "assessment_test_cases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("assessment_questions.id"), nullable=False),
        sa.Column("input", sa.Text(), nullable=False, server_default=""),
        sa.Column("expected_output", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("points", sa.Float(), nullable=False, server_default="1"),
        sa.Column("timeout_ms", sa.Integer(), nullable=True),
        sa.Column("memory_limit_mb", sa.Integer(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_assessment_test_cases_id", "assessment_test_cases", ["id"])
    op.create_index("ix_assessment_test_cases_question_id", "assessment_test_cases", ["question_id"])

    op.create_table(
        "assessment_invites",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=False),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("candidate_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("assessment_templates.id"), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("status", invite_status, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invited_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(updated=True),
        sa.UniqueConstraint("application_id", "template_id", name="uq_invite_application_template"),
    )
    op.create_index("ix_assessment_invites_id", "assessment_invites", ["id"])
    op.create_index("ix_assessment_invites_token", "assessment_invites", ["token"], unique=True)
    for column in ("application_id", "job_id", "candidate_id", "template_id"):
        op.create_index(f"ix_assessment_invites_{column}", "assessment_invites", [column])

    op.create_table(
        "assessment_attempts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("application_id", sa.Integer(), sa.ForeignKey("applications.id"), nullable=True),
        sa.Column("candidate_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("template_id", sa.Integer(), sa.ForeignKey("assessment_templates.id"), nullable=False),
        sa.Column("invite_id", sa.Integer(), sa.ForeignKey("assessment_invites.id"), nullable=True),
        sa.Column("status", attempt_status, nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_score", sa.Float(), nullable=True),
        sa.Column("passed", sa.Boolean(), nullable=True),
        sa.Column("section_scores", sa.JSON(), nullable=True),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=True),
        sa.Column("flags", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("tab_switches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("visibility_hidden", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("copy_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paste_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("right_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("focus_loss", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("page_hides", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("multi_session", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("first_client_sig", sa.String(), nullable=True),
        sa.Column("last_client_sig", sa.String(), nullable=True),
        sa.Column("severity_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("severity", proctoring_severity, nullable=False, server_default="NORMAL"),
        *_timestamps(updated=True),
    )
    op.create_index("ix_assessment_attempts_id", "assessment_attempts", ["id"])
    for column in ("application_id", "candidate_id", "template_id", "invite_id"):
        op.create_index(f"ix_assessment_attempts_{column}", "assessment_attempts", [column])
    op.create_index(
        "uq_attempt_open_invite",
        "assessment_attempts",
        ["invite_id"],
        unique=True,
        postgresql_where=OPEN_ATTEMPT_WHERE,
        sqlite_where=OPEN_ATTEMPT_WHERE,
    )

    op.create_table(
        "attempt_answers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("attempt_id", sa.Integer(), sa.ForeignKey("assessment_attempts.id"), nullable=False),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("assessment_questions.id"), nullable=False),
        sa.Column("selected_options", sa.JSON(), nullable=True),
        sa.Column("is_correct", sa.Boolean(), nullable=True),
        sa.Column("points_earned", sa.Float(), nullable=False, server_default="0"),
        sa.Column("execution_results", sa.JSON(), nullable=True),
        sa.Column("language", sa.String(), nullable=True),
        sa.Column("time_spent_seconds", sa.Integer(), nullable=True),
        sa.Column("answered_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("attempt_id", "question_id", name="uq_attempt_answer_question"),
    )
    op.create_index("ix_attempt_answers_id", "attempt_answers", ["id"])
    op.create_index("ix_attempt_answers_attempt_id", "attempt_answers", ["attempt_id"])
    op.create_index("ix_attempt_answers_question_id", "attempt_answers", ["question_id"])

    op.create_table(
        "credit_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invite_id", sa.Integer(), sa.ForeignKey("assessment_invites.id"), nullable=False),
        sa.Column("company_id", sa.Integer(), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("kind", sa.String(), nullable=False, server_default="ASSESSMENT_INVITE"),
        sa.Column("cycle", sa.Integer(), nullable=False),
        sa.Column("amount", CREDIT, nullable=False),
        sa.Column("status", ledger_status, nullable=False),
        sa.Column("reserved_amount", CREDIT, nullable=True),
        sa.Column("charged_amount", CREDIT, nullable=True),
        sa.Column("refunded_amount", CREDIT, nullable=True),
        sa.Column("assessment_type", assessment_type, nullable=True),
        sa.Column("difficulty", assessment_difficulty, nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        *_timestamps(updated=True),
    )
    op.create_index("ix_credit_ledger_entries_id", "credit_ledger_entries", ["id"])
    for column in ("invite_id", "company_id", "cycle", "created_at"):
        op.create_index(f"ix_credit_ledger_entries_{column}", "credit_ledger_entries", [column])
    op.create_index(
        "uq_ledger_open_reservation_per_invite",
        "credit_ledger_entries",
        ["invite_id"],
        unique=True,
        postgresql_where=OPEN_RESERVATION_WHERE,
        sqlite_where=OPEN_RESERVATION_WHERE,
    )

    op.create_table(
        "proctoring_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("attempt_id", sa.Integer(), sa.ForeignKey("assessment_attempts.id"), nullable=False),
        sa.Column("candidate_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("event_id", sa.String(), nullable=True),
        sa.Column("client_sig", sa.String(), nullable=True),
        sa.Column("ip_prefix", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("client_ts", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("attempt_id", "event_id", name="uq_proctoring_event_attempt_event_id"),
    )
    op.create_index("ix_proctoring_events_id", "proctoring_events", ["id"])
    op.create_index("ix_proctoring_events_attempt_id", "proctoring_events", ["attempt_id"])
    op.create_index("ix_proctoring_events_candidate_id", "proctoring_events", ["candidate_id"])

    op.create_table(
        "code_executions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("attempt_id", sa.Integer(), sa.ForeignKey("assessment_attempts.id"), nullable=False),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("assessment_questions.id"), nullable=False),
        sa.Column("candidate_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("language", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("output", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("execution_time_ms", sa.Float(), nullable=True),
        sa.Column("memory_used_mb", sa.Float(), nullable=True),
        sa.Column("test_results", sa.JSON(), nullable=True),
        sa.Column("is_submission", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("points_earned", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_code_executions_id", "code_executions", ["id"])
    for column in ("attempt_id", "question_id", "candidate_id"):
        op.create_index(f"ix_code_executions_{column}", "code_executions", [column])


def downgrade() -> None:
    for table in (
        "code_executions",
        "proctoring_events",
        "credit_ledger_entries",
        "attempt_answers",
        "assessment_attempts",
        "assessment_invites",
        "assessment_test_cases",
        "assessment_questions",
        "applications",
        "job_assessments",
        "assessment_templates",
        "jobs",
        "users",
        "companies",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum_type in (
        ledger_status,
        proctoring_severity,
        attempt_status,
        invite_status,
        question_type,
        assessment_difficulty,
        assessment_type,
    ):
        enum_type.drop(bind, checkfirst=True)
