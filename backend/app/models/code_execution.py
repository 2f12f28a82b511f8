from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.sql import func

from ..platform.database import Base


class CodeExecution(Base):
    __tablename__ = "code_executions"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("assessment_attempts.id"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("assessment_questions.id"), index=True, nullable=False)
    candidate_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    code = Column(Text, nullable=False)
    language = Column(String, nullable=False)
    status = Column(String, nullable=False)
    output = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    execution_time_ms = Column(Float, nullable=True)
    memory_used_mb = Column(Float, nullable=True)
    test_results = Column(JSON, nullable=True)
    is_submission = Column(Boolean, default=False, nullable=False)
    points_earned = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
