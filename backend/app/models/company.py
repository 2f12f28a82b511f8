from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..platform.database import Base

CREDIT_AMOUNT = Numeric(12, 2)


class Company(Base):
    """Hiring company and its assessment credit account.

    The three credit columns are owned by the credit ledger; nothing else
    writes them.
    """

    __tablename__ = "companies"
    __table_args__ = (
        CheckConstraint("credits_available >= 0", name="ck_company_credits_available_non_negative"),
        CheckConstraint("credits_reserved >= 0", name="ck_company_credits_reserved_non_negative"),
        CheckConstraint("credits_used >= 0", name="ck_company_credits_used_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    credits_available = Column(CREDIT_AMOUNT, nullable=False, default=Decimal("0"))
    credits_reserved = Column(CREDIT_AMOUNT, nullable=False, default=Decimal("0"))
    credits_used = Column(CREDIT_AMOUNT, nullable=False, default=Decimal("0"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    users = relationship("User", back_populates="company")
    jobs = relationship("Job", back_populates="company")
    credit_ledger_entries = relationship("CreditLedgerEntry", back_populates="company")
