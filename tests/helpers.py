"""
Builders and fakes shared by the unit and API tests.

Notice payloads and contract return data are encoded here the same way the
rollup and the pool contract encode them, so tests exercise the real
decoders.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from app.services.notice_feed import VerificationNotice
from app.services.onchain_reader import (
    GET_DSCR_RESULT_SELECTOR,
    HAS_VERIFIED_DSCR_SELECTOR,
    OnChainVerificationResult,
)

BORROWER_A = "0xa11ce00000000000000000000000000000000001"
BORROWER_B = "0xb0b0000000000000000000000000000000000002"
POOL_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"

# SQLite drops tzinfo, so everything stored in tests is naive UTC
NOW = datetime(2025, 6, 1, 12, 0, 0)
SYNCED_AT = NOW - timedelta(hours=1)


# =============================================================================
# NOTICE FEED
# =============================================================================


def dscr_payload(
    loan_id: str,
    dscr_value: str = "1.3",
    calculated_at: float = 1700000000,
    proof_hash: str = "xyz",
    verification_id: int = 1,
    **overrides,
) -> dict:
    payload = {
        "action": "verify_dscr_zkfetch",
        "success": True,
        "loan_id": loan_id,
        "borrower_address": BORROWER_A,
        "dscr_value": dscr_value,
        "monthly_noi": "2000.00",
        "monthly_debt_service": "1538.46",
        "meets_threshold": float(dscr_value) >= 1.25,
        "transaction_count": 42,
        "zkfetch_proof_hash": proof_hash,
        "verification_id": verification_id,
        "calculated_at": calculated_at,
    }
    payload.update(overrides)
    return payload


def encode_payload(payload) -> str:
    return "0x" + json.dumps(payload).encode("utf-8").hex()


def graphql_body(payloads: list) -> dict:
    return {
        "data": {
            "notices": {
                "edges": [
                    {"node": {"index": i, "input": {"index": i}, "payload": encode_payload(p)}}
                    for i, p in enumerate(payloads)
                ]
            }
        }
    }


def notice_transport(
    payloads: Optional[list] = None,
    status_code: int = 200,
    body: Optional[dict] = None,
) -> httpx.MockTransport:
    """GraphQL endpoint serving the given notice payloads."""
    content = body if body is not None else graphql_body(payloads or [])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=content)

    return httpx.MockTransport(handler)


def make_notice(
    loan_id: str = "loan-1",
    dscr_value: str = "1.3",
    calculated_at: float = 1700000000,
    proof_hash: str = "xyz",
    verification_id: int = 1,
) -> VerificationNotice:
    return VerificationNotice(
        **dscr_payload(loan_id, dscr_value, calculated_at, proof_hash, verification_id),
        notice_index=verification_id,
    )


# =============================================================================
# CONTRACT
# =============================================================================


def word(value: int) -> str:
    return f"{value:064x}"


def encode_proof_hash(text: str) -> str:
    return text.encode("ascii").hex().ljust(64, "0")


def rpc_transport(
    has_verified: bool = True,
    dscr_value: int = 1850,
    interest_rate: int = 1050,
    proof_hash: str = "abc123",
    verified_at: int = 1700000000,
    error: Optional[dict] = None,
    calls: Optional[list] = None,
) -> httpx.MockTransport:
    """JSON-RPC endpoint answering the pool contract's two view calls."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        data = body["params"][0]["data"]
        if calls is not None:
            calls.append(data)
        if error is not None:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})

        selector = data[2:10]
        if selector == HAS_VERIFIED_DSCR_SELECTOR:
            result = "0x" + word(1 if has_verified else 0)
        elif selector == GET_DSCR_RESULT_SELECTOR:
            result = "0x" + (
                word(dscr_value)
                + word(interest_rate)
                + encode_proof_hash(proof_hash)
                + word(verified_at)
            )
        else:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": "0x"})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return httpx.MockTransport(handler)


def make_onchain(
    dscr_value: int = 1850,
    interest_rate: int = 1050,
    proof_hash: str = "abc123",
    verified_at: Optional[datetime] = None,
) -> OnChainVerificationResult:
    return OnChainVerificationResult(
        has_verified=True,
        dscr_value=dscr_value,
        interest_rate=interest_rate,
        proof_hash=proof_hash,
        proof_hash_raw="0x" + encode_proof_hash(proof_hash),
        verified_at=verified_at or datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
    )


# =============================================================================
# FAKE ADAPTERS
# =============================================================================


class FakeNoticeClient:
    """Notice feed stand-in that counts reads."""

    def __init__(self, notices: Optional[list] = None, available: bool = True):
        self.notices = notices or []
        self.available = available
        self.calls = 0

    def _for_loan(self, loan_id: str) -> Optional[list]:
        if not self.available:
            return None
        matching = [n for n in self.notices if n.loan_id == loan_id]
        return sorted(matching, key=lambda n: n.calculated_at_datetime, reverse=True)

    async def fetch_notices_for_loan(self, loan_id: str):
        self.calls += 1
        return self._for_loan(loan_id)

    async def fetch_latest_notice(self, loan_id: str):
        self.calls += 1
        notices = self._for_loan(loan_id)
        return notices[0] if notices else None


class FakeOnChainReader:
    """Contract reader stand-in that counts reads."""

    def __init__(
        self,
        result: Optional[OnChainVerificationResult] = None,
        contract_address: Optional[str] = POOL_ADDRESS,
        exc: Optional[Exception] = None,
    ):
        self.result = result
        self.contract_address = contract_address
        self.exc = exc
        self.calls = 0

    async def read_verification(self, loan_id: str):
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.result
