"""
Pytest configuration and fixtures for Lendflow DSCR tests.

Fixtures provide:
- An in-memory SQLite database with the application schema
- A factory for loan applications and their synced transactions
- Reconciliation engines wired to fake adapters
"""

import os
import sys
from datetime import timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.models import Base, LoanApplication, Transaction
from app.services.reconciliation import ReconciliationEngine
from app.services.response_cache import ResponseCache
from tests.helpers import BORROWER_A, NOW, SYNCED_AT, FakeNoticeClient, FakeOnChainReader


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session on a fresh in-memory database."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def make_loan(db_session: AsyncSession):
    """
    Factory inserting a loan application plus transactions.

    transactions: iterable of (amount, date) or (amount, date, transaction_id)
    """
    async def _make_loan(
        loan_id: str = "loan-1",
        account_address: str = BORROWER_A,
        loan_amount=Decimal("10000.00"),
        funding_urgency: str = "within_2_weeks",
        last_synced_at=SYNCED_AT,
        lend_score=None,
        lend_score_reason_codes=None,
        transactions=(),
    ) -> LoanApplication:
        loan = LoanApplication(
            id=loan_id,
            account_address=account_address,
            loan_amount=loan_amount,
            funding_urgency=funding_urgency,
            last_synced_at=last_synced_at,
            lend_score=lend_score,
            lend_score_reason_codes=lend_score_reason_codes or [],
            lend_score_retrieved_at=SYNCED_AT if lend_score is not None else None,
        )
        db_session.add(loan)

        for i, tx in enumerate(transactions):
            amount, date = tx[0], tx[1]
            transaction_id = tx[2] if len(tx) > 2 else f"{loan_id}-tx-{i}"
            db_session.add(
                Transaction(
                    loan_application_id=loan_id,
                    transaction_id=transaction_id,
                    amount=amount,
                    date=date,
                    is_deleted=False,
                )
            )

        await db_session.commit()
        return loan

    return _make_loan


@pytest.fixture
def noi_2000_transactions():
    """Five transactions in one month netting $2,000 of operating income."""
    start = NOW - timedelta(days=25)
    return [
        (-1500.00, start),
        (-1500.00, start + timedelta(days=5)),
        (-500.00, start + timedelta(days=10)),
        (1000.00, start + timedelta(days=15)),
        (500.00, start + timedelta(days=20)),
    ]


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

@pytest.fixture
def notice_client() -> FakeNoticeClient:
    return FakeNoticeClient()


@pytest.fixture
def onchain_reader() -> FakeOnChainReader:
    return FakeOnChainReader()


@pytest.fixture
def engine(notice_client, onchain_reader) -> ReconciliationEngine:
    return ReconciliationEngine(
        notice_client=notice_client,
        onchain_reader=onchain_reader,
        annual_rate_percent=10.0,
        chain_id=421614,
    )


@pytest.fixture
def cache() -> ResponseCache:
    return ResponseCache(ttl_seconds=30.0)
