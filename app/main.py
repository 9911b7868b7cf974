"""
Lendflow DSCR Verification API

Main FastAPI application entry point.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.rate_limit import check_rate_limit, close_redis
from app.services.errors import InvalidLoanInputError, LoanNotFoundError

settings = get_settings()

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)
logger = structlog.get_logger()

RATE_LIMIT_EXEMPT_PATHS = {"/", "/docs", "/redoc", "/openapi.json", "/v1/ping", "/v1/health"}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan manager."""
    logger.info(
        "Starting Lendflow DSCR API",
        version=settings.api_version,
        environment=settings.environment,
        chain_id=settings.chain_id,
        loan_pool_configured=settings.has_loan_pool,
    )
    yield
    await close_redis()
    logger.info("Shutting down Lendflow DSCR API")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Log all requests with timing."""
    request_id = str(uuid.uuid4())[:8]
    start = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "request",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round(duration_ms, 2),
    )

    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Apply rate limiting based on client IP."""
    path = request.url.path
    if path in RATE_LIMIT_EXEMPT_PATHS:
        return await call_next(request)

    ip = client_ip(request)
    allowed, remaining, reset = await check_rate_limit(f"api:{ip}")

    if not allowed:
        logger.warning("rate_limit_exceeded", client_ip=ip, path=path)
        return ORJSONResponse(
            status_code=429,
            content={
                "error": {
                    "code": "rate_limit_exceeded",
                    "message": f"Too many requests. Try again in {reset} seconds.",
                }
            },
            headers={
                "X-RateLimit-Limit": str(settings.rate_limit_requests),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(reset),
                "Retry-After": str(reset),
            },
        )

    response = await call_next(request)
    response.headers["X-RateLimit-Limit"] = str(settings.rate_limit_requests)
    response.headers["X-RateLimit-Remaining"] = str(remaining)
    response.headers["X-RateLimit-Reset"] = str(reset)
    return response


app.include_router(api_router, prefix="/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "name": settings.api_title,
        "version": settings.api_version,
        "docs": "/docs",
        "verification": {
            "dscr_status": "/v1/loans/{loan_id}/dscr-status",
            "history": "/v1/loans/{loan_id}/verification-history",
            "verify_onchain": "/v1/loans/{loan_id}/verify-onchain",
        },
        "system": {
            "health": "/v1/health",
        },
    }


# Error handlers
@app.exception_handler(LoanNotFoundError)
async def loan_not_found_handler(request: Request, exc: LoanNotFoundError):
    return ORJSONResponse(
        status_code=404,
        content={"error": {"code": "not_found", "message": str(exc)}},
    )


@app.exception_handler(InvalidLoanInputError)
async def invalid_input_handler(request: Request, exc: InvalidLoanInputError):
    logger.warning("invalid_loan_input", path=request.url.path, error=str(exc))
    return ORJSONResponse(
        status_code=400,
        content={"error": {"code": "invalid_input", "message": str(exc)}},
    )


@app.exception_handler(401)
async def unauthorized_handler(request: Request, exc):
    return ORJSONResponse(
        status_code=401,
        content={"error": {"code": "unauthorized", "message": "Unauthorized"}},
    )


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    return ORJSONResponse(
        status_code=404,
        content={
            "error": {
                "code": "not_found",
                "message": str(exc.detail) if hasattr(exc, "detail") else "Not found",
            }
        },
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    logger.error("internal_error", path=request.url.path, error=str(exc))
    return ORJSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_error",
                "message": "An internal error occurred",
            }
        },
    )
