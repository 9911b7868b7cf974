"""
Verification history and on-chain cross-check views.

History lists every DSCR notice the rollup emitted for a loan, newest
first, plus the settled on-chain result. A notice counts as relayed when
its proof hash matches the decoded on-chain proof hash.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from app.services.chains import explorer_url
from app.services.notice_feed import VerificationNotice
from app.services.onchain_reader import OnChainVerificationResult
from app.services.rate_derivation import (
    base_rate,
    dscr_health,
    dscr_risk_tier,
    format_rate,
    scale_dscr,
)
from app.services.reconciliation import ProofSource, ReconciliationEngine, to_iso

# The contract stores proof hashes as bytes32, truncating longer strings
ONCHAIN_PROOF_HASH_LENGTH = 32


def proof_hashes_match(notice_hash: Optional[str], onchain_hash: Optional[str]) -> bool:
    if not notice_hash or not onchain_hash:
        return False
    return notice_hash[:ONCHAIN_PROOF_HASH_LENGTH] == onchain_hash


@dataclass
class VerificationEntry:
    id: str
    source: ProofSource
    loan_id: str
    dscr_value: int  # scaled by 1000
    interest_rate: int
    proof_hash: str
    transaction_count: int
    meets_threshold: bool
    verified_at: Optional[str]
    relayed_to_chain: bool
    verification_id: Optional[int] = None
    explorer_url: Optional[str] = None

    def to_response(self) -> dict:
        dscr = self.dscr_value / 1000
        return {
            "id": self.id,
            "source": self.source.value,
            "loanId": self.loan_id,
            "dscrValue": self.dscr_value,
            "dscrValueFormatted": f"{dscr:.2f}",
            "dscrHealth": dscr_health(dscr),
            "riskTier": dscr_risk_tier(dscr),
            "interestRate": self.interest_rate,
            "interestRateFormatted": format_rate(self.interest_rate),
            "proofHash": self.proof_hash,
            "transactionCount": self.transaction_count,
            "meetsThreshold": self.meets_threshold,
            "verifiedAt": self.verified_at,
            "verificationId": self.verification_id,
            "relayedToChain": self.relayed_to_chain,
            "explorerUrl": self.explorer_url,
        }


def notice_entry(notice: VerificationNotice, onchain_proof_hash: Optional[str]) -> VerificationEntry:
    return VerificationEntry(
        id=f"cartesi-{notice.notice_index}-{notice.verification_id}",
        source=ProofSource.CARTESI,
        loan_id=notice.loan_id,
        dscr_value=scale_dscr(notice.dscr),
        interest_rate=base_rate(notice.dscr),
        proof_hash=notice.zkfetch_proof_hash,
        transaction_count=notice.transaction_count,
        meets_threshold=notice.meets_threshold,
        verified_at=to_iso(notice.calculated_at_datetime),
        verification_id=notice.verification_id,
        relayed_to_chain=proof_hashes_match(notice.zkfetch_proof_hash, onchain_proof_hash),
    )


def onchain_entry(
    loan_id: str,
    onchain: OnChainVerificationResult,
    contract_address: Optional[str],
    chain_id: Optional[int] = None,
) -> VerificationEntry:
    return VerificationEntry(
        id=f"onchain-{loan_id}",
        source=ProofSource.ONCHAIN,
        loan_id=loan_id,
        dscr_value=onchain.dscr_value or 0,
        interest_rate=onchain.interest_rate or 0,
        proof_hash=onchain.proof_hash or "",
        transaction_count=0,
        meets_threshold=onchain.meets_threshold,
        verified_at=to_iso(onchain.verified_at),
        relayed_to_chain=True,
        explorer_url=explorer_url("address", contract_address, chain_id),
    )


async def _read_all(
    engine: ReconciliationEngine, loan_id: str
) -> tuple[Optional[list[VerificationNotice]], Optional[OnChainVerificationResult]]:
    return await asyncio.gather(
        engine.notice_client.fetch_notices_for_loan(loan_id),
        engine.onchain_reader.read_verification(loan_id),
    )


async def build_verification_history(engine: ReconciliationEngine, loan_id: str) -> dict:
    """All verifications for an access-checked loan."""
    notices, onchain = await _read_all(engine, loan_id)

    settled = onchain if onchain is not None and onchain.has_verified else None
    onchain_hash = settled.proof_hash if settled else None

    verifications = [notice_entry(n, onchain_hash) for n in notices or []]
    if settled:
        verifications.insert(
            0, onchain_entry(loan_id, settled, engine.contract_address, engine.chain_id)
        )

    return {
        "loanId": loan_id,
        "verifications": [v.to_response() for v in verifications],
        "totalCount": len(verifications),
        "onchainVerified": settled is not None,
        "noticeFeedAvailable": notices is not None,
        "contractAddress": engine.contract_address,
    }


async def build_onchain_check(engine: ReconciliationEngine, loan_id: str) -> dict:
    """Latest notice and on-chain result side by side."""
    notices, onchain = await _read_all(engine, loan_id)

    notice = notices[0] if notices else None
    settled = onchain if onchain is not None and onchain.has_verified else None

    cartesi_data = None
    if notice:
        cartesi_data = {
            "dscrValue": notice.dscr,
            "dscrValueScaled": scale_dscr(notice.dscr),
            "proofHash": notice.zkfetch_proof_hash,
            "meetsThreshold": notice.meets_threshold,
            "transactionCount": notice.transaction_count,
            "verificationId": notice.verification_id,
            "calculatedAt": to_iso(notice.calculated_at_datetime),
        }

    onchain_data = None
    if settled:
        onchain_data = {
            "dscrValue": settled.dscr,
            "dscrValueScaled": settled.dscr_value,
            "interestRate": settled.interest_rate,
            "interestRateFormatted": format_rate(settled.interest_rate or 0),
            "proofHash": settled.proof_hash,
            "proofHashRaw": settled.proof_hash_raw,
            "verifiedAt": to_iso(settled.verified_at),
        }

    both = notice is not None and settled is not None
    return {
        "loanId": loan_id,
        "verified": both and proof_hashes_match(notice.zkfetch_proof_hash, settled.proof_hash),
        "dscrMatch": both and scale_dscr(notice.dscr) == settled.dscr_value,
        "hasVerifiedDscr": settled is not None,
        "cartesi": cartesi_data,
        "cartesiError": "Failed to fetch from notice feed" if notices is None else None,
        "onchain": onchain_data,
        "onchainError": (
            "Failed to read from contract"
            if onchain is None and engine.contract_address else None
        ),
        "contractAddress": engine.contract_address,
        "contractExplorerUrl": explorer_url("address", engine.contract_address, engine.chain_id),
    }
