import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base


class AssessmentType(str, enum.Enum):
    MCQ = "MCQ"
    CODING = "CODING"
    MIXED = "MIXED"


class AssessmentDifficulty(str, enum.Enum):
    JUNIOR = "JUNIOR"
    MID = "MID"
    SENIOR = "SENIOR"


class QuestionType(str, enum.Enum):
    MCQ = "MCQ"
    CODING = "CODING"


class AssessmentTemplate(Base):
    __tablename__ = "assessment_templates"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=True)
    title = Column(String, nullable=False)
    type = Column(Enum(AssessmentType), nullable=False, default=AssessmentType.MCQ)
    difficulty = Column(Enum(AssessmentDifficulty), nullable=False, default=AssessmentDifficulty.MID)
    time_limit_minutes = Column(Integer, nullable=False, default=30)
    passing_score = Column(Integer, nullable=False, default=70)
    # [{"name": "Algorithms", "questions": 3}, ...]
    sections = Column(JSON, nullable=True)
    penalize_wrong = Column(Boolean, default=False, nullable=False)
    allow_retry = Column(Boolean, default=False, nullable=False)
    max_attempts = Column(Integer, default=1, nullable=False)
    shuffle_questions = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    questions = relationship("AssessmentQuestion", back_populates="template", order_by="AssessmentQuestion.order_index")


class AssessmentQuestion(Base):
    __tablename__ = "assessment_questions"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("assessment_templates.id"), index=True, nullable=False)
    type = Column(Enum(QuestionType), nullable=False, default=QuestionType.MCQ)
    section = Column(String, nullable=True)
    difficulty = Column(String, nullable=True)
    question_text = Column(Text, nullable=False)
    code_snippet = Column(Text, nullable=True)
    # [{"id": "a", "text": "...", "isCorrect": true}, ...]
    options = Column(JSON, nullable=True)
    allow_multiple = Column(Boolean, default=False, nullable=False)
    # null means every supported language is accepted
    allowed_languages = Column(JSON, nullable=True)
    order_index = Column(Integer, default=0, nullable=False)
    times_used = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    template = relationship("AssessmentTemplate", back_populates="questions")
    test_cases = relationship("TestCase", back_populates="question", order_by="TestCase.order_index")


class TestCase(Base):
    """Judge0 test case for a coding question. Immutable once published."""

    __tablename__ = "assessment_test_cases"
    __test__ = False  # not a pytest class

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("assessment_questions.id"), index=True, nullable=False)
    input = Column(Text, nullable=False, default="")
    expected_output = Column(Text, nullable=False, default="")
    is_hidden = Column(Boolean, default=False, nullable=False)
    points = Column(Float, default=1.0, nullable=False)
    timeout_ms = Column(Integer, nullable=True)
    memory_limit_mb = Column(Integer, nullable=True)
    order_index = Column(Integer, default=0, nullable=False)

    question = relationship("AssessmentQuestion", back_populates="test_cases")
