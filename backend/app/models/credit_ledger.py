import enum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, JSON, Numeric, String, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base
from .assessment_template import AssessmentDifficulty, AssessmentType


class LedgerStatus(str, enum.Enum):
    RESERVED = "RESERVED"
    CHARGED = "CHARGED"
    REFUNDED = "REFUNDED"


_OPEN_RESERVATION_WHERE = text("status = 'RESERVED'")


class CreditLedgerEntry(Base):
    """Per-invite credit movement. Rows are updated only to close a reservation."""

    __tablename__ = "credit_ledger_entries"
    __table_args__ = (
        Index(
            "uq_ledger_open_reservation_per_invite",
            "invite_id",
            unique=True,
            postgresql_where=_OPEN_RESERVATION_WHERE,
            sqlite_where=_OPEN_RESERVATION_WHERE,
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    invite_id = Column(Integer, ForeignKey("assessment_invites.id"), index=True, nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    kind = Column(String, nullable=False, default="ASSESSMENT_INVITE")
    cycle = Column(Integer, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(LedgerStatus), nullable=False, default=LedgerStatus.RESERVED)
    reserved_amount = Column(Numeric(12, 2), nullable=True)
    charged_amount = Column(Numeric(12, 2), nullable=True)
    refunded_amount = Column(Numeric(12, 2), nullable=True)
    assessment_type = Column(Enum(AssessmentType), nullable=True)
    difficulty = Column(Enum(AssessmentDifficulty), nullable=True)
    entry_metadata = Column("meta", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="credit_ledger_entries")
    invite = relationship("AssessmentInvite", back_populates="ledger_entries")
