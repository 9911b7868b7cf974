"""
API routes for Lendflow DSCR verification

Core endpoints:
- GET /v1/loans/{loan_id}/dscr-status
- GET /v1/loans/{loan_id}/verification-history
- GET /v1/loans/{loan_id}/verify-onchain
- GET /v1/ping
- GET /v1/health
"""

from datetime import datetime, timezone
from functools import lru_cache

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import ORJSONResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import CallerSession, get_caller, resolve_scope
from app.core.config import get_settings
from app.core.database import get_db
from app.services.chains import get_chain
from app.services.errors import VerificationError
from app.services.reconciliation import ReconciliationEngine, get_dscr_status
from app.services.response_cache import ResponseCache, get_dscr_status_cache
from app.services.transaction_ledger import build_request, get_loan_for_caller
from app.services.verification_history import build_onchain_check, build_verification_history

logger = structlog.get_logger()

router = APIRouter()


# =============================================================================
# DEPENDENCIES
# =============================================================================


@lru_cache
def get_engine() -> ReconciliationEngine:
    """Process-wide reconciliation engine."""
    return ReconciliationEngine.from_settings()


def get_cache() -> ResponseCache:
    return get_dscr_status_cache()


def error_response(status_code: int, code: str, message: str) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


# =============================================================================
# HEALTH CHECK
# =============================================================================


@router.get("/ping", tags=["System"])
async def ping():
    """Simple ping endpoint for load balancer health checks."""
    return {"status": "ok"}


@router.get("/health", tags=["System"])
async def health_check(
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    """Health check with database verification and upstream configuration."""
    settings = get_settings()
    checks = {}

    try:
        await db.execute(select(func.now()))
        checks["database"] = "healthy"
    except Exception as e:
        logger.error("health.database_failed", error=str(e))
        checks["database"] = "unhealthy"

    chain = get_chain(settings.chain_id)
    # Upstream URLs can embed credentials
    checks["notice_feed"] = "configured" if settings.is_production else settings.cartesi_graphql_url
    checks["chain"] = chain.name if chain else f"unknown ({settings.chain_id})"
    checks["loan_pool"] = "configured" if settings.has_loan_pool else "not configured"
    checks["dscr_cache_entries"] = len(cache)

    healthy = checks["database"] == "healthy"
    return ORJSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# =============================================================================
# DSCR VERIFICATION
# =============================================================================


@router.get("/loans/{loan_id}/dscr-status", tags=["Verification"])
async def dscr_status(
    loan_id: str,
    approver: bool = Query(False, description="Request reviewer access"),
    caller: CallerSession = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
    cache: ResponseCache = Depends(get_cache),
):
    """
    DSCR verification status for a loan application.

    Polled by borrower and approver pages until verification completes.
    The record comes from the pool contract when relayed, else from the
    latest rollup notice, else from a local computation over synced
    transactions. `processing: true` means no transactions are synced yet.
    """
    settings = get_settings()
    request = build_request(
        loan_id,
        caller.address,
        resolve_scope(caller, approver),
        months=settings.dscr_window_months,
    )

    try:
        record = await get_dscr_status(db, request, engine, cache)
    except VerificationError:
        raise
    except Exception as e:
        logger.error("dscr_status.failed", loan_id=loan_id, error=str(e), exc_info=True)
        return error_response(500, "internal_error", "Failed to get DSCR status")

    return record.to_response()


@router.get("/loans/{loan_id}/verification-history", tags=["Verification"])
async def verification_history(
    loan_id: str,
    approver: bool = Query(False, description="Request reviewer access"),
    caller: CallerSession = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Every DSCR verification recorded for a loan, on-chain result first."""
    loan = await get_loan_for_caller(db, loan_id, caller.address, resolve_scope(caller, approver))
    return await build_verification_history(engine, loan.id)


@router.get("/loans/{loan_id}/verify-onchain", tags=["Verification"])
async def verify_onchain(
    loan_id: str,
    approver: bool = Query(False, description="Request reviewer access"),
    caller: CallerSession = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Compare the latest rollup notice with the relayed on-chain result."""
    loan = await get_loan_for_caller(db, loan_id, caller.address, resolve_scope(caller, approver))
    return await build_onchain_check(engine, loan.id)
