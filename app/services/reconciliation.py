"""
DSCR Reconciliation Engine

Merges three eventually-consistent sources into one verification record
for a loan, in strict precedence order:

1. On-chain (proof_source="onchain"): the pool contract holds a relayed,
   settled result. Authoritative; nothing overrides it.
2. Notice feed (proof_source="cartesi"): the rollup computed and proved a
   DSCR that has not been relayed on-chain yet (pending_relay=True).
3. Local (proof_source="local"): DSCR computed here from synced
   transactions, shown until a verifiable computation exists.

Values always come from the winning source alone; they are never blended.
If no source has data and no transactions are synced, the record is the
"processing" state rather than an error.

The on-chain and notice reads run concurrently. Each adapter contains its
own failures and returns None, so an outage in one source degrades to the
next tier instead of failing the request.
"""

import asyncio
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models import LoanApplication
from app.services import dscr_calculator
from app.services.chains import explorer_url
from app.services.errors import InvalidLoanInputError
from app.services.notice_feed import NoticeFeedClient, VerificationNotice
from app.services.onchain_reader import OnChainStateReader, OnChainVerificationResult
from app.services.rate_derivation import (
    base_rate,
    derive_rate,
    dscr_health,
    get_stored_lend_score,
    lend_score_health,
    reason_descriptions,
    scale_dscr,
    unscale_dscr,
)
from app.services.response_cache import ResponseCache
from app.services.transaction_ledger import (
    LoanVerificationRequest,
    fetch_window_transactions,
    get_loan_for_caller,
)

logger = structlog.get_logger()


class ProofSource(str, enum.Enum):
    ONCHAIN = "onchain"
    CARTESI = "cartesi"
    LOCAL = "local"


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """UTC ISO-8601 with milliseconds, e.g. 2023-11-14T22:13:20.000Z."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@dataclass
class CanonicalVerificationRecord:
    """Reconciled verification state of one loan."""
    verified: bool
    processing: bool = False
    dscr_value: Optional[int] = None  # scaled by 1000
    interest_rate: Optional[int] = None  # basis points
    base_interest_rate: Optional[int] = None  # basis points, before LendScore
    proof_hash: Optional[str] = None
    verified_at: Optional[datetime] = None
    transaction_count: int = 0
    lend_score: Optional[int] = None
    lend_score_reasons: Optional[list[str]] = None
    proof_source: Optional[ProofSource] = None
    onchain_verified: bool = False
    pending_relay: bool = False
    explorer_url: Optional[str] = None
    contract_address: Optional[str] = None

    @classmethod
    def not_ready(cls) -> "CanonicalVerificationRecord":
        return cls(verified=False, processing=True)

    def to_response(self) -> dict:
        """JSON response body (camelCase)."""
        if self.processing:
            return {"verified": False, "processing": True}

        return {
            "verified": self.verified,
            "dscrValue": self.dscr_value,
            "dscrHealth": dscr_health(unscale_dscr(self.dscr_value or 0)),
            "interestRate": self.interest_rate,
            "baseInterestRate": self.base_interest_rate,
            "proofHash": self.proof_hash,
            "verifiedAt": to_iso(self.verified_at),
            "transactionCount": self.transaction_count,
            "lendScore": self.lend_score,
            "lendScoreHealth": lend_score_health(self.lend_score),
            "lendScoreReasons": self.lend_score_reasons,
            "proofSource": self.proof_source.value if self.proof_source else None,
            "onchainVerified": self.onchain_verified,
            "pendingRelay": self.pending_relay,
            "explorerUrl": self.explorer_url,
            "contractAddress": self.contract_address,
        }


class ReconciliationEngine:
    """
    Produces CanonicalVerificationRecords.

    USAGE
    -----
        engine = ReconciliationEngine.from_settings()
        record = await engine.reconcile(db, request)
    """

    def __init__(
        self,
        notice_client: NoticeFeedClient,
        onchain_reader: OnChainStateReader,
        annual_rate_percent: float = 10.0,
        chain_id: Optional[int] = None,
    ):
        self.notice_client = notice_client
        self.onchain_reader = onchain_reader
        self.annual_rate_percent = annual_rate_percent
        self.chain_id = chain_id

    @classmethod
    def from_settings(cls) -> "ReconciliationEngine":
        settings = get_settings()
        return cls(
            notice_client=NoticeFeedClient.from_settings(),
            onchain_reader=OnChainStateReader.from_settings(),
            annual_rate_percent=settings.default_annual_rate_percent,
            chain_id=settings.chain_id,
        )

    @property
    def contract_address(self) -> Optional[str]:
        return self.onchain_reader.contract_address

    async def read_sources(
        self, loan_id: str
    ) -> tuple[Optional[OnChainVerificationResult], Optional[VerificationNotice]]:
        """Read the contract and the notice feed concurrently."""
        onchain, notice = await asyncio.gather(
            self.onchain_reader.read_verification(loan_id),
            self.notice_client.fetch_latest_notice(loan_id),
            return_exceptions=True,
        )
        if isinstance(onchain, BaseException):
            logger.warning("reconcile.onchain_adapter_raised", loan_id=loan_id, error=str(onchain))
            onchain = None
        if isinstance(notice, BaseException):
            logger.warning("reconcile.notice_adapter_raised", loan_id=loan_id, error=str(notice))
            notice = None
        return onchain, notice

    async def reconcile(
        self,
        db: AsyncSession,
        request: LoanVerificationRequest,
    ) -> CanonicalVerificationRecord:
        """
        Reconcile a loan's verification state.

        Raises:
            LoanNotFoundError: loan missing or not visible to the caller
            InvalidLoanInputError: local fallback needs a principal the loan lacks
        """
        loan = await get_loan_for_caller(db, request.loan_id, request.caller_address, request.scope)

        onchain, notice = await self.read_sources(loan.id)

        if onchain is not None and onchain.has_verified:
            record = self._from_onchain(loan, onchain)
        elif notice is not None:
            record = self._from_notice(loan, notice)
        else:
            record = await self._from_local(db, loan, request)

        logger.info(
            "reconcile.complete",
            loan_id=loan.id,
            proof_source=record.proof_source.value if record.proof_source else None,
            processing=record.processing,
        )
        return record

    def _from_onchain(
        self, loan: LoanApplication, onchain: OnChainVerificationResult
    ) -> CanonicalVerificationRecord:
        lend_score = get_stored_lend_score(loan)
        return CanonicalVerificationRecord(
            verified=True,
            dscr_value=onchain.dscr_value,
            interest_rate=onchain.interest_rate,
            base_interest_rate=base_rate(onchain.dscr),
            proof_hash=onchain.proof_hash,
            verified_at=onchain.verified_at,
            transaction_count=0,  # not stored on-chain
            lend_score=lend_score.score if lend_score else None,
            lend_score_reasons=reason_descriptions(lend_score.reason_codes) if lend_score else None,
            proof_source=ProofSource.ONCHAIN,
            onchain_verified=True,
            pending_relay=False,
            explorer_url=(
                explorer_url("address", self.contract_address, self.chain_id)
                if onchain.proof_hash else None
            ),
            contract_address=self.contract_address,
        )

    def _from_notice(
        self, loan: LoanApplication, notice: VerificationNotice
    ) -> CanonicalVerificationRecord:
        decision = derive_rate(notice.dscr, get_stored_lend_score(loan))
        return CanonicalVerificationRecord(
            verified=True,
            dscr_value=scale_dscr(notice.dscr),
            interest_rate=decision.interest_rate,
            base_interest_rate=decision.base_rate,
            proof_hash=notice.zkfetch_proof_hash or None,
            verified_at=notice.calculated_at_datetime,
            transaction_count=notice.transaction_count,
            lend_score=decision.lend_score,
            lend_score_reasons=decision.reasons,
            proof_source=ProofSource.CARTESI,
            onchain_verified=False,
            pending_relay=True,
            contract_address=self.contract_address,
        )

    async def _from_local(
        self,
        db: AsyncSession,
        loan: LoanApplication,
        request: LoanVerificationRequest,
    ) -> CanonicalVerificationRecord:
        transactions = await fetch_window_transactions(db, loan.id, request.window_start)
        if not transactions or loan.last_synced_at is None:
            return CanonicalVerificationRecord.not_ready()

        if loan.loan_amount is None or loan.loan_amount <= 0:
            raise InvalidLoanInputError(
                f"Loan {loan.id} has no principal; cannot compute debt service"
            )

        computation = dscr_calculator.compute(
            transactions,
            loan_principal=float(loan.loan_amount),
            term_months=dscr_calculator.term_months_for_urgency(loan.funding_urgency),
            annual_rate_percent=self.annual_rate_percent,
        )
        decision = derive_rate(computation.ratio, get_stored_lend_score(loan))

        return CanonicalVerificationRecord(
            verified=True,
            dscr_value=computation.scaled_ratio,
            interest_rate=decision.interest_rate,
            base_interest_rate=decision.base_rate,
            verified_at=loan.last_synced_at,
            transaction_count=computation.transaction_count,
            lend_score=decision.lend_score,
            lend_score_reasons=decision.reasons,
            proof_source=ProofSource.LOCAL,
            onchain_verified=False,
            pending_relay=False,
            contract_address=self.contract_address,
        )


async def get_dscr_status(
    db: AsyncSession,
    request: LoanVerificationRequest,
    engine: ReconciliationEngine,
    cache: ResponseCache,
) -> CanonicalVerificationRecord:
    """Cached reconciliation. Only completed records are cached."""
    key = request.cache_key
    cached = cache.get(key)
    if cached is not None:
        return cached

    record = await engine.reconcile(db, request)
    if not record.processing:
        cache.put(key, record)
    return record
