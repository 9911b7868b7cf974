"""
Notice Feed Client
==================

Reads DSCR verification notices emitted by the Cartesi rollup through its
GraphQL endpoint. Each computation run emits one notice, so a loan can have
several; the most recent one by computation time wins.

Notice payloads are hex-encoded UTF-8 JSON. Only successful
``verify_dscr_zkfetch`` payloads are DSCR notices; other notice types share
the same feed and are skipped.

Every failure (network, HTTP status, GraphQL errors, bad payload) is logged
and reported as "no notice". Callers never see an exception.

USAGE
-----
    from app.services.notice_feed import NoticeFeedClient

    client = NoticeFeedClient(graphql_url="http://localhost:8080/graphql")
    notice = await client.fetch_latest_notice("clx123...")
"""

import json
import math
from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel, ValidationError, field_validator

from app.core.config import get_settings
from app.services.errors import UpstreamUnavailableError

logger = structlog.get_logger()


DSCR_NOTICE_ACTION = "verify_dscr_zkfetch"

# Values below this are Unix seconds, at or above it milliseconds
MILLISECOND_TIMESTAMP_THRESHOLD = 1_000_000_000_000

NOTICES_QUERY = """
query GetNotices($limit: Int!) {
  notices(last: $limit) {
    edges {
      node {
        index
        input {
          index
        }
        payload
      }
    }
  }
}
"""


def normalize_timestamp(value: float) -> datetime:
    """Convert a seconds-or-milliseconds Unix timestamp to a UTC datetime."""
    millis = value * 1000 if value < MILLISECOND_TIMESTAMP_THRESHOLD else value
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


class VerificationNotice(BaseModel):
    """A DSCR verification notice from the rollup."""
    loan_id: str
    borrower_address: str
    dscr_value: str
    monthly_noi: str = "0"
    monthly_debt_service: str = "0"
    meets_threshold: bool = False
    transaction_count: int = 0
    zkfetch_proof_hash: str = ""
    verification_id: int = 0
    calculated_at: float
    notice_index: Optional[int] = None

    @field_validator("dscr_value")
    @classmethod
    def dscr_must_be_finite(cls, value: str) -> str:
        if not math.isfinite(float(value)):
            raise ValueError(f"dscr_value is not finite: {value}")
        return value

    @field_validator("calculated_at")
    @classmethod
    def calculated_at_must_be_representable(cls, value: float) -> float:
        try:
            normalize_timestamp(value)
        except (OverflowError, OSError, ValueError) as e:
            raise ValueError(f"calculated_at out of range: {value}") from e
        return value

    @property
    def dscr(self) -> float:
        return float(self.dscr_value)

    @property
    def calculated_at_datetime(self) -> datetime:
        return normalize_timestamp(self.calculated_at)


def decode_payload(hex_payload: str) -> Optional[dict]:
    """Decode a hex-encoded JSON payload, or None if it is not valid JSON."""
    hex_str = hex_payload[2:] if hex_payload.startswith("0x") else hex_payload
    try:
        return json.loads(bytes.fromhex(hex_str).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None


def parse_notice_payload(hex_payload: str, notice_index: Optional[int] = None) -> Optional[VerificationNotice]:
    """
    Parse a raw notice payload into a VerificationNotice.

    Returns None for non-DSCR notices, failed verifications and malformed
    payloads.
    """
    parsed = decode_payload(hex_payload)
    if parsed is None:
        logger.warning("notice_feed.payload_undecodable", notice_index=notice_index)
        return None

    if not isinstance(parsed, dict) or parsed.get("action") != DSCR_NOTICE_ACTION:
        return None

    if not parsed.get("borrower_address") or not parsed.get("loan_id"):
        logger.warning(
            "notice_feed.payload_missing_fields",
            notice_index=notice_index,
            has_borrower=bool(parsed.get("borrower_address")),
            has_loan=bool(parsed.get("loan_id")),
        )
        return None

    if not parsed.get("success"):
        logger.info("notice_feed.skip_failed_verification", loan_id=parsed.get("loan_id"))
        return None

    try:
        notice = VerificationNotice(**parsed, notice_index=notice_index)
    except (ValidationError, ValueError, TypeError) as e:
        logger.warning("notice_feed.payload_invalid", notice_index=notice_index, error=str(e))
        return None

    return notice


class NoticeFeedClient:
    """
    Client for the rollup's GraphQL notice endpoint.

    PARAMETERS
    ----------
    graphql_url : str
        GraphQL endpoint of the rollup node
    limit : int
        Number of most recent notices scanned per query
    timeout : float
        Request timeout in seconds
    transport : httpx.AsyncBaseTransport
        Optional transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        graphql_url: str,
        limit: int = 50,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.graphql_url = graphql_url
        self.limit = limit
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "NoticeFeedClient":
        settings = get_settings()
        return cls(
            graphql_url=settings.cartesi_graphql_url,
            limit=settings.notice_fetch_limit,
            timeout=settings.notice_timeout_seconds,
        )

    async def _query_notices(self) -> list[dict]:
        """Raw notice nodes. Raises UpstreamUnavailableError on any failure."""
        body = {"query": NOTICES_QUERY, "variables": {"limit": self.limit}}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.graphql_url, json=body)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailableError(f"notice feed request failed: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamUnavailableError("notice feed returned a non-object response")
        if data.get("errors"):
            raise UpstreamUnavailableError(f"notice feed GraphQL errors: {data['errors']}")

        edges = ((data.get("data") or {}).get("notices") or {}).get("edges") or []
        return [edge["node"] for edge in edges if isinstance(edge, dict) and edge.get("node")]

    async def fetch_notices(self) -> list[VerificationNotice]:
        """All DSCR notices in the scanned window, for every loan."""
        nodes = await self._query_notices()
        notices = []
        for node in nodes:
            payload = node.get("payload")
            if not payload:
                continue
            notice = parse_notice_payload(payload, notice_index=node.get("index"))
            if notice:
                notices.append(notice)
        return notices

    async def fetch_notices_for_loan(self, loan_id: str) -> Optional[list[VerificationNotice]]:
        """
        DSCR notices for one loan, newest first.

        Returns None when the feed could not be read, an empty list when it
        was read and holds nothing for the loan.
        """
        try:
            notices = await self.fetch_notices()
        except UpstreamUnavailableError as e:
            logger.warning("notice_feed.fetch_failed", loan_id=loan_id, error=str(e))
            return None
        except Exception as e:
            logger.warning("notice_feed.unexpected_error", loan_id=loan_id, error=str(e))
            return None

        matching = [n for n in notices if n.loan_id == loan_id]
        matching.sort(key=lambda n: n.calculated_at_datetime, reverse=True)
        return matching

    async def fetch_latest_notice(self, loan_id: str) -> Optional[VerificationNotice]:
        """Notice with the latest computation time for a loan, or None."""
        notices = await self.fetch_notices_for_loan(loan_id)
        if not notices:
            return None
        return max(notices, key=lambda n: n.calculated_at_datetime)
