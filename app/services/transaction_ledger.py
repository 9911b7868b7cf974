"""
Transaction Ledger Accessor

Loads a loan application on behalf of a caller and reads its synced bank
transactions for the rolling DSCR window.

Access rules:
- Borrowers (owner scope) only see loans whose account address matches
  theirs, compared case-insensitively.
- Approvers and admins (reviewer scope) see every loan.

A missing loan and a loan the caller may not see raise the same
LoanNotFoundError.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import LoanApplication, Transaction
from app.services.errors import LoanNotFoundError

DSCR_WINDOW_MONTHS = 3


class AccessScope(str, enum.Enum):
    OWNER = "owner"
    REVIEWER = "reviewer"


@dataclass(frozen=True)
class LoanVerificationRequest:
    """One caller's request for a loan's verification state."""
    loan_id: str
    caller_address: str
    scope: AccessScope
    window_start: datetime

    @property
    def cache_key(self) -> tuple[str, str]:
        return (self.loan_id, self.caller_address.lower())


@dataclass(frozen=True)
class TransactionRecord:
    transaction_id: str
    amount: Optional[float]
    date: Optional[datetime]


def window_start(now: Optional[datetime] = None, months: int = DSCR_WINDOW_MONTHS) -> datetime:
    """Start of the rolling transaction window."""
    if now is None:
        now = datetime.now(timezone.utc)
    return now - relativedelta(months=months)


def build_request(
    loan_id: str,
    caller_address: str,
    scope: AccessScope,
    now: Optional[datetime] = None,
    months: int = DSCR_WINDOW_MONTHS,
) -> LoanVerificationRequest:
    return LoanVerificationRequest(
        loan_id=loan_id,
        caller_address=caller_address.lower(),
        scope=scope,
        window_start=window_start(now, months),
    )


async def get_loan_for_caller(
    db: AsyncSession,
    loan_id: str,
    caller_address: str,
    scope: AccessScope,
) -> LoanApplication:
    """Load a loan the caller is allowed to see, or raise LoanNotFoundError."""
    query = select(LoanApplication).where(LoanApplication.id == loan_id)
    if scope != AccessScope.REVIEWER:
        query = query.where(
            func.lower(LoanApplication.account_address) == caller_address.lower()
        )

    result = await db.execute(query)
    loan = result.scalar_one_or_none()
    if loan is None:
        raise LoanNotFoundError(loan_id)
    return loan


async def fetch_window_transactions(
    db: AsyncSession,
    loan_id: str,
    since: datetime,
) -> list[TransactionRecord]:
    """
    Non-deleted transactions with an identifier dated on or after `since`.

    One row per transaction identifier, even if the sync pipeline wrote
    duplicates before the unique constraint existed.
    """
    first_ids = (
        select(func.min(Transaction.id))
        .where(
            Transaction.loan_application_id == loan_id,
            Transaction.is_deleted.is_(False),
            Transaction.transaction_id.is_not(None),
            Transaction.date >= since,
        )
        .group_by(Transaction.transaction_id)
    )

    result = await db.execute(
        select(Transaction.transaction_id, Transaction.amount, Transaction.date)
        .where(Transaction.id.in_(first_ids))
        .order_by(Transaction.date)
    )
    return [
        TransactionRecord(transaction_id=row.transaction_id, amount=row.amount, date=row.date)
        for row in result
    ]

