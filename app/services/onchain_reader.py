"""
On-Chain State Reader
=====================

Reads relayed DSCR verification results from the loan pool contract with
plain JSON-RPC ``eth_call`` requests.

Contract entry points (view functions):
- hasZkFetchVerifiedDscr(bytes32 loanId) -> bool
- getZkFetchDscrResult(bytes32 loanId)
      -> (uint256 dscrValue, uint256 interestRate, bytes32 proofHash, uint256 verifiedAt)

dscrValue is scaled by 1000, interestRate is in basis points, verifiedAt is
Unix seconds. proofHash holds the ASCII proof hash string itself, hex-encoded
and zero-padded, so it must be decoded back to text before display.

All failures (network, RPC error, malformed return data) are logged and
reported as None.
"""

from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel

from app.core.config import get_settings
from app.services.errors import UpstreamUnavailableError
from app.services.rate_derivation import DSCR_THRESHOLD_SCALED, unscale_dscr

logger = structlog.get_logger()


# keccak256 selectors
HAS_VERIFIED_DSCR_SELECTOR = "59ee06fc"  # hasZkFetchVerifiedDscr(bytes32)
GET_DSCR_RESULT_SELECTOR = "9dc788e6"  # getZkFetchDscrResult(bytes32)

WORD_HEX_LENGTH = 64  # 32 bytes


class OnChainVerificationResult(BaseModel):
    """Verification state of a loan in the pool contract."""
    has_verified: bool
    dscr_value: Optional[int] = None  # scaled by 1000
    interest_rate: Optional[int] = None  # basis points
    proof_hash: Optional[str] = None  # decoded
    proof_hash_raw: Optional[str] = None
    verified_at: Optional[datetime] = None

    @property
    def dscr(self) -> float:
        return unscale_dscr(self.dscr_value or 0)

    @property
    def meets_threshold(self) -> bool:
        return (self.dscr_value or 0) >= DSCR_THRESHOLD_SCALED


def loan_id_to_bytes32(loan_id: str) -> str:
    """
    Convert a loan ID to a 0x-prefixed bytes32 hex string.

    Hex IDs are right-padded with zeros; any other ID is UTF-8 hex-encoded
    first. IDs longer than 32 bytes cannot be represented.
    """
    if loan_id.startswith("0x"):
        hex_str = loan_id[2:]
    else:
        hex_str = loan_id.encode("utf-8").hex()

    if len(hex_str) > WORD_HEX_LENGTH:
        raise ValueError(f"Loan ID does not fit in bytes32: {loan_id}")

    return "0x" + hex_str.ljust(WORD_HEX_LENGTH, "0")


def decode_proof_hash(encoded: str) -> str:
    """
    Decode a bytes32 proof hash holding hex-encoded ASCII.

    0x6162633132330000... -> "abc123" (stops at the first zero byte)
    """
    hex_str = encoded[2:] if encoded.startswith("0x") else encoded
    chars = []
    for i in range(0, len(hex_str) - 1, 2):
        code = int(hex_str[i:i + 2], 16)
        if code == 0:
            break
        chars.append(chr(code))
    return "".join(chars)


def split_words(data: str) -> list[str]:
    """Split ABI return data into 32-byte hex words."""
    hex_str = data[2:] if data.startswith("0x") else data
    if not hex_str or len(hex_str) % WORD_HEX_LENGTH:
        raise ValueError(f"Malformed ABI return data ({len(hex_str)} hex chars)")
    return [hex_str[i:i + WORD_HEX_LENGTH] for i in range(0, len(hex_str), WORD_HEX_LENGTH)]


def decode_bool(data: str) -> bool:
    return int(split_words(data)[0], 16) != 0


def decode_dscr_result(data: str) -> tuple[int, int, str, int]:
    """Decode (uint256, uint256, bytes32, uint256) return data."""
    words = split_words(data)
    if len(words) < 4:
        raise ValueError(f"Expected 4 return words, got {len(words)}")
    return int(words[0], 16), int(words[1], 16), "0x" + words[2], int(words[3], 16)


class OnChainStateReader:
    """
    Reads verification results from the loan pool contract.

    PARAMETERS
    ----------
    rpc_url : str
        JSON-RPC endpoint
    contract_address : str
        Loan pool contract; when empty every read returns None
    timeout : float
        Request timeout in seconds
    transport : httpx.AsyncBaseTransport
        Optional transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.timeout = timeout
        self._transport = transport
        self._request_id = 0

    @classmethod
    def from_settings(cls) -> "OnChainStateReader":
        settings = get_settings()
        return cls(
            rpc_url=settings.rpc_url,
            contract_address=settings.loan_pool_address,
            timeout=settings.rpc_timeout_seconds,
        )

    async def _eth_call(self, client: httpx.AsyncClient, selector: str, loan_key: str) -> str:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "eth_call",
            "params": [
                {"to": self.contract_address, "data": "0x" + selector + loan_key[2:]},
                "latest",
            ],
        }
        try:
            resp = await client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailableError(f"RPC request failed: {e}") from e

        if not isinstance(body, dict):
            raise UpstreamUnavailableError("RPC returned a non-object response")
        if body.get("error"):
            raise UpstreamUnavailableError(f"RPC error: {body['error']}")

        result = body.get("result")
        if not isinstance(result, str):
            raise UpstreamUnavailableError("RPC response has no result")
        return result

    async def _read(self, loan_id: str) -> OnChainVerificationResult:
        loan_key = loan_id_to_bytes32(loan_id)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            has_verified = decode_bool(
                await self._eth_call(client, HAS_VERIFIED_DSCR_SELECTOR, loan_key)
            )
            if not has_verified:
                return OnChainVerificationResult(has_verified=False)

            dscr_value, interest_rate, proof_hash_raw, verified_at = decode_dscr_result(
                await self._eth_call(client, GET_DSCR_RESULT_SELECTOR, loan_key)
            )

        return OnChainVerificationResult(
            has_verified=True,
            dscr_value=dscr_value,
            interest_rate=interest_rate,
            proof_hash=decode_proof_hash(proof_hash_raw),
            proof_hash_raw=proof_hash_raw,
            verified_at=datetime.fromtimestamp(verified_at, tz=timezone.utc),
        )

    async def read_verification(self, loan_id: str) -> Optional[OnChainVerificationResult]:
        """Contract verification state for a loan, or None if it could not be read."""
        if not self.contract_address:
            logger.debug("onchain.skip", loan_id=loan_id, reason="no loan_pool_address configured")
            return None

        try:
            return await self._read(loan_id)
        except (UpstreamUnavailableError, ValueError, OverflowError, OSError) as e:
            logger.warning("onchain.read_failed", loan_id=loan_id, error=str(e))
            return None
        except Exception as e:
            logger.warning("onchain.unexpected_error", loan_id=loan_id, error=str(e))
            return None
