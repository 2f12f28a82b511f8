import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base


class InviteStatus(str, enum.Enum):
    SENT = "SENT"
    STARTED = "STARTED"
    EVALUATED = "EVALUATED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class AssessmentInvite(Base):
    __tablename__ = "assessment_invites"
    __table_args__ = (
        UniqueConstraint("application_id", "template_id", name="uq_invite_application_template"),
    )

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(Integer, ForeignKey("applications.id"), index=True, nullable=False)
    job_id = Column(Integer, ForeignKey("jobs.id"), index=True, nullable=False)
    candidate_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    template_id = Column(Integer, ForeignKey("assessment_templates.id"), index=True, nullable=False)
    token = Column(String, unique=True, index=True, nullable=False)
    status = Column(Enum(InviteStatus), nullable=False, default=InviteStatus.SENT)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    invited_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    application = relationship("Application")
    job = relationship("Job")
    candidate = relationship("User", foreign_keys=[candidate_id])
    template = relationship("AssessmentTemplate")
    ledger_entries = relationship("CreditLedgerEntry", back_populates="invite")
