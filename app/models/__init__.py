"""Database models for Lendflow DSCR verification"""

from .schema import (
    Base,
    LoanApplication,
    Transaction,
)

__all__ = [
    "Base",
    "LoanApplication",
    "Transaction",
]
