"""
Unit tests for loan access control and the transaction window query.

Runs against an in-memory SQLite database (aiosqlite).
"""

import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from app.models import Transaction
from app.services.errors import LoanNotFoundError
from app.services.transaction_ledger import (
    AccessScope,
    build_request,
    fetch_window_transactions,
    get_loan_for_caller,
    window_start,
)
from tests.helpers import BORROWER_A, BORROWER_B, NOW


class TestWindow:
    """Tests for the rolling three-month window."""

    @pytest.mark.unit
    def test_three_calendar_months(self):
        assert window_start(datetime(2025, 6, 1, 12, 0)) == datetime(2025, 3, 1, 12, 0)

    @pytest.mark.unit
    def test_month_end_clamped(self):
        assert window_start(datetime(2025, 5, 31)) == datetime(2025, 2, 28)

    @pytest.mark.unit
    def test_request_normalizes_caller(self):
        request = build_request("loan-1", "0xABCdef", AccessScope.OWNER, now=NOW)
        assert request.caller_address == "0xabcdef"
        assert request.cache_key == ("loan-1", "0xabcdef")
        assert request.window_start == datetime(2025, 3, 1, 12, 0)


class TestLoanAccess:
    """Tests for get_loan_for_caller."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_owner_sees_own_loan(self, db_session, make_loan):
        await make_loan("loan-1", account_address=BORROWER_A)
        loan = await get_loan_for_caller(db_session, "loan-1", BORROWER_A, AccessScope.OWNER)
        assert loan.id == "loan-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_owner_match_is_case_insensitive(self, db_session, make_loan):
        await make_loan("loan-1", account_address=BORROWER_A)
        loan = await get_loan_for_caller(db_session, "loan-1", BORROWER_A.upper(), AccessScope.OWNER)
        assert loan.id == "loan-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_borrower_gets_same_not_found(self, db_session, make_loan):
        """Someone else's loan and a nonexistent loan are indistinguishable."""
        await make_loan("loan-1", account_address=BORROWER_A)

        with pytest.raises(LoanNotFoundError) as not_owned:
            await get_loan_for_caller(db_session, "loan-1", BORROWER_B, AccessScope.OWNER)
        with pytest.raises(LoanNotFoundError) as missing:
            await get_loan_for_caller(db_session, "no-such-loan", BORROWER_B, AccessScope.OWNER)

        assert str(not_owned.value) == str(missing.value) == "Loan application not found"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reviewer_sees_any_loan(self, db_session, make_loan):
        await make_loan("loan-1", account_address=BORROWER_A)
        loan = await get_loan_for_caller(db_session, "loan-1", BORROWER_B, AccessScope.REVIEWER)
        assert loan.id == "loan-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reviewer_missing_loan(self, db_session):
        with pytest.raises(LoanNotFoundError):
            await get_loan_for_caller(db_session, "nope", BORROWER_B, AccessScope.REVIEWER)


class TestWindowTransactions:
    """Tests for fetch_window_transactions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_window_and_ordering(self, db_session, make_loan):
        await make_loan("loan-1", transactions=[
            (-100.0, NOW - timedelta(days=10)),
            (-200.0, NOW - timedelta(days=40)),
            (-300.0, NOW - timedelta(days=120)),  # before the window
        ])

        rows = await fetch_window_transactions(db_session, "loan-1", window_start(NOW))
        assert [r.amount for r in rows] == [-200.0, -100.0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_excludes_deleted_and_unidentified(self, db_session, make_loan):
        await make_loan("loan-1", transactions=[(-100.0, NOW - timedelta(days=5), "keep")])
        db_session.add_all([
            Transaction(
                loan_application_id="loan-1",
                transaction_id="gone",
                amount=-50.0,
                date=NOW - timedelta(days=4),
                is_deleted=True,
            ),
            Transaction(
                loan_application_id="loan-1",
                transaction_id=None,
                amount=-25.0,
                date=NOW - timedelta(days=3),
                is_deleted=False,
            ),
        ])
        await db_session.commit()

        rows = await fetch_window_transactions(db_session, "loan-1", window_start(NOW))
        assert [r.transaction_id for r in rows] == ["keep"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_scoped_to_loan(self, db_session, make_loan):
        await make_loan("loan-1", transactions=[(-100.0, NOW - timedelta(days=5))])
        await make_loan("loan-2", transactions=[(-999.0, NOW - timedelta(days=5))])

        rows = await fetch_window_transactions(db_session, "loan-1", window_start(NOW))
        assert [r.amount for r in rows] == [-100.0]

