"""
Lendflow - Database Schema

Tables read by the DSCR verification pipeline. Transactions are written by
the bank sync pipeline; this service only reads them.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# =============================================================================
# LOANS
# =============================================================================


class LoanApplication(Base):
    """Borrower loan application."""

    __tablename__ = "loan_applications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_address: Mapped[str] = mapped_column(String(64), nullable=False)  # stored lowercase

    # Terms
    loan_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 2))  # principal in USD
    funding_urgency: Mapped[Optional[str]] = mapped_column(String(32))  # within_week, within_2_weeks, ...

    # Bank sync
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # LendScore (supplemental 1-99 cash flow score)
    lend_score: Mapped[Optional[int]] = mapped_column(Integer)
    lend_score_reason_codes: Mapped[list] = mapped_column(JSON, default=list)
    lend_score_retrieved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Metadata
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="loan_application", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_loan_applications_account_address", "account_address"),
    )


class Transaction(Base):
    """Bank transaction synced for a loan (Plaid sign convention: negative = inflow)."""

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    loan_application_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("loan_applications.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128))
    amount: Mapped[Optional[float]] = mapped_column(Float)
    date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    loan_application: Mapped["LoanApplication"] = relationship(back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("loan_application_id", "transaction_id", name="uq_transactions_loan_txid"),
        Index("idx_transactions_loan_date", "loan_application_id", "date"),
    )
