"""Exceptions raised by the DSCR verification services."""


class VerificationError(Exception):
    """Base class for verification pipeline errors."""


class LoanNotFoundError(VerificationError):
    """Loan does not exist or the caller may not see it.

    Both cases share one message so callers cannot probe for existence.
    """

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__("Loan application not found")


class InvalidLoanInputError(VerificationError):
    """Stored loan data cannot support a local DSCR computation."""


class UpstreamUnavailableError(VerificationError):
    """Notice feed or chain read failed. Never escapes an adapter."""
