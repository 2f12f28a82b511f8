import enum

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, Float, ForeignKey, Index, Integer, JSON, String, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base


class AttemptStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    EVALUATED = "EVALUATED"
    EXPIRED = "EXPIRED"


OPEN_ATTEMPT_STATUSES = (AttemptStatus.NOT_STARTED, AttemptStatus.IN_PROGRESS)

_OPEN_ATTEMPT_WHERE = text("status IN ('NOT_STARTED', 'IN_PROGRESS') AND invite_id IS NOT NULL")


class ProctoringSeverity(str, enum.Enum):
    NORMAL = "NORMAL"
    SUSPICIOUS = "SUSPICIOUS"
    CRITICAL = "CRITICAL"


class AssessmentAttempt(Base):
    __tablename__ = "assessment_attempts"
    __table_args__ = (
        # one open attempt per invite; rotation frees the slot by nulling invite_id
        Index(
            "uq_attempt_open_invite",
            "invite_id",
            unique=True,
            postgresql_where=_OPEN_ATTEMPT_WHERE,
            sqlite_where=_OPEN_ATTEMPT_WHERE,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), index=True, nullable=True)
    candidate_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    template_id = Column(Integer, ForeignKey("assessment_templates.id"), index=True, nullable=False)
    invite_id = Column(Integer, ForeignKey("assessment_invites.id"), index=True, nullable=True)
    status = Column(Enum(AttemptStatus), nullable=False, default=AttemptStatus.NOT_STARTED)
    attempt_number = Column(Integer, nullable=False, default=1)
    started_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=True)
    total_score = Column(Float, nullable=True)
    passed = Column(Boolean, nullable=True)
    section_scores = Column(JSON, nullable=True)
    time_spent_seconds = Column(Integer, nullable=True)
    # question/option order chosen at start plus submit-time flags such as tooFast
    flags = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    # Proctoring counters, written only through SQL increments
    tab_switches = Column(Integer, nullable=False, default=0)
    visibility_hidden = Column(Integer, nullable=False, default=0)
    copy_attempts = Column(Integer, nullable=False, default=0)
    paste_attempts = Column(Integer, nullable=False, default=0)
    right_clicks = Column(Integer, nullable=False, default=0)
    focus_loss = Column(Integer, nullable=False, default=0)
    page_hides = Column(Integer, nullable=False, default=0)
    multi_session = Column(Boolean, nullable=False, default=False)
    first_client_sig = Column(String, nullable=True)
    last_client_sig = Column(String, nullable=True)
    severity_score = Column(Integer, nullable=False, default=0)
    severity = Column(Enum(ProctoringSeverity), nullable=False, default=ProctoringSeverity.NORMAL)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    candidate = relationship("User")
    template = relationship("AssessmentTemplate")
    invite = relationship("AssessmentInvite")
    answers = relationship("AttemptAnswer", back_populates="attempt")


class AttemptAnswer(Base):
    __tablename__ = "attempt_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_answer_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("assessment_attempts.id"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("assessment_questions.id"), index=True, nullable=False)
    selected_options = Column(JSON, nullable=True)
    is_correct = Column(Boolean, nullable=True)
    points_earned = Column(Float, nullable=False, default=0.0)
    execution_results = Column(JSON, nullable=True)
    language = Column(String, nullable=True)
    time_spent_seconds = Column(Integer, nullable=True)
    answered_at = Column(DateTime(timezone=True), nullable=True)

    attempt = relationship("AssessmentAttempt", back_populates="answers")
    question = relationship("AssessmentQuestion")
