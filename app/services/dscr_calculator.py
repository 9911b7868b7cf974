"""
DSCR Calculation Service

Computes a borrower's Debt Service Coverage Ratio from synced bank
transactions:

    DSCR = monthly net operating income / monthly debt service

Transactions follow the Plaid sign convention: negative amounts are
inflows (income), positive amounts are outflows (expenses).

Debt service uses the standard amortization payment:

    P * r * (1 + r)^n / ((1 + r)^n - 1),  r = APR / 12, n = term in months
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol


MONTH_LENGTH = timedelta(days=30)

DEFAULT_TERM_MONTHS = 24

# Borrower's declared funding urgency -> loan term
FUNDING_URGENCY_TERM_MONTHS = {
    "within_week": 12,
    "within_2_weeks": 24,
    "within_month": 36,
    "just_browsing": 24,
}


class TransactionLike(Protocol):
    amount: Optional[float]
    date: Optional[datetime]


@dataclass
class DscrComputation:
    """Result of a local DSCR computation."""
    monthly_income: float
    monthly_expenses: float
    monthly_noi: float
    monthly_debt_service: float
    ratio: float
    month_span: int
    transaction_count: int

    @property
    def scaled_ratio(self) -> int:
        """Ratio scaled by 1000, the on-chain representation."""
        return round(self.ratio * 1000)


def term_months_for_urgency(funding_urgency: Optional[str]) -> int:
    """Map a funding urgency selection to a term, defaulting to 24 months."""
    if not funding_urgency:
        return DEFAULT_TERM_MONTHS
    return FUNDING_URGENCY_TERM_MONTHS.get(funding_urgency, DEFAULT_TERM_MONTHS)


def _finite_amount(value) -> float:
    if value is None:
        return 0.0
    amount = float(value)
    return amount if math.isfinite(amount) else 0.0


def calculate_month_span(dates: Iterable[Optional[datetime]]) -> int:
    """Months covered by the dated transactions, never less than 1."""
    dated = [d for d in dates if d is not None]
    if not dated:
        return 1
    spread = max(dated) - min(dated)
    return max(1, math.ceil(spread / MONTH_LENGTH))


def calculate_monthly_debt_service(
    principal: float,
    annual_rate_percent: float,
    term_months: int,
) -> float:
    """
    Monthly amortized payment for a loan.

    Args:
        principal: Loan principal in dollars
        annual_rate_percent: APR as percentage (e.g. 10.0 for 10%)
        term_months: Number of monthly payments

    Returns:
        Monthly payment; 0 when there is no principal.
    """
    if principal is None or not math.isfinite(principal) or principal <= 0:
        return 0.0

    n = max(1, int(term_months))
    r = annual_rate_percent / 100 / 12

    if r <= 0:
        return principal / n

    growth = (1 + r) ** n
    return principal * r * growth / (growth - 1)


def compute(
    transactions: Iterable[TransactionLike],
    loan_principal: float,
    term_months: int,
    annual_rate_percent: float,
) -> DscrComputation:
    """
    Compute monthly NOI, monthly debt service and the DSCR ratio.

    The ratio is always finite and non-negative: it is 0 when the debt
    service is 0 or NOI is negative.
    """
    transactions = list(transactions)

    total_income = 0.0
    total_expenses = 0.0
    for tx in transactions:
        amount = _finite_amount(tx.amount)
        if amount < 0:
            total_income += abs(amount)
        elif amount > 0:
            total_expenses += amount

    month_span = calculate_month_span(tx.date for tx in transactions)

    monthly_income = total_income / month_span
    monthly_expenses = total_expenses / month_span
    monthly_noi = monthly_income - monthly_expenses

    debt_service = calculate_monthly_debt_service(
        float(loan_principal or 0), annual_rate_percent, term_months
    )

    if debt_service > 0 and monthly_noi > 0:
        ratio = monthly_noi / debt_service
    else:
        ratio = 0.0
    if not math.isfinite(ratio):
        ratio = 0.0

    return DscrComputation(
        monthly_income=monthly_income,
        monthly_expenses=monthly_expenses,
        monthly_noi=monthly_noi,
        monthly_debt_service=debt_service,
        ratio=ratio,
        month_span=month_span,
        transaction_count=len(transactions),
    )
