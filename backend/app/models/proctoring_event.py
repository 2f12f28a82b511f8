from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.sql import func

from ..platform.database import Base


class ProctoringEvent(Base):
    """Append-only integrity telemetry. ``event_id`` is the client's idempotency key."""

    __tablename__ = "proctoring_events"
    __table_args__ = (
        UniqueConstraint("attempt_id", "event_id", name="uq_proctoring_event_attempt_event_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("assessment_attempts.id"), index=True, nullable=False)
    candidate_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    type = Column(String, nullable=False)
    meta = Column(JSON, nullable=True)
    event_id = Column(String, nullable=True)
    client_sig = Column(String, nullable=True)
    ip_prefix = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    client_ts = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
