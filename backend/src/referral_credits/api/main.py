"""Main FastAPI application for the referral credit API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from referral_credits.api.rate_limit import limiter
from referral_credits.api.v1.auth import router as auth_router
from referral_credits.api.v1.dashboard import router as dashboard_router
from referral_credits.api.v1.purchases import router as purchases_router
from referral_credits.api.v1.referral import router as referral_router
from referral_credits.api.v1.webhooks import router as webhooks_router
from referral_credits.errors import (
    AlreadyReferred,
    CodeGenerationExhausted,
    InvalidAmount,
    InvalidCode,
    NotEligible,
    NotFound,
    NotPending,
    ReferralCreditError,
    SelfReferral,
    StoreUnavailable,
)
from referral_credits.logging_config import get_logger
from referral_credits.settings import settings
from referral_credits.storage.db import db

logger = get_logger(__name__)

VERSION = "1.0.0"

# Seconds a client should wait before retrying a StoreUnavailable response
RETRY_AFTER_SECONDS = 1

ERROR_STATUS = {
    InvalidCode: status.HTTP_400_BAD_REQUEST,
    SelfReferral: status.HTTP_400_BAD_REQUEST,
    AlreadyReferred: status.HTTP_409_CONFLICT,
    NotEligible: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
    NotPending: status.HTTP_409_CONFLICT,
    InvalidAmount: status.HTTP_422_UNPROCESSABLE_ENTITY,
    CodeGenerationExhausted: status.HTTP_503_SERVICE_UNAVAILABLE,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON-only API: nothing may be loaded from responses
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Cache-Control"] = "no-store"

        return response


def error_response(exc: ReferralCreditError) -> JSONResponse:
    """Render a typed failure as a JSON error body."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error": exc.code,
            "retryable": exc.retryable,
        },
        headers=headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("app_starting", env=settings.env)

    db.create_tables()
    logger.info("database_tables_created")

    yield

    # Shutdown
    logger.info("app_shutting_down")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI app
    """
    # Hide API docs in production
    is_production = settings.env == "production"

    app = FastAPI(
        title="Referral Credits API",
        description="Referral codes, first-purchase conversions and credit rewards",
        version=VERSION,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    # Security Headers middleware (must be added before CORS)
    app.add_middleware(SecurityHeadersMiddleware)

    allowed_origins = [
        origin.strip()
        for origin in settings.allowed_origins.split(",")
        if origin.strip()
    ]

    # Block wildcard in production
    if is_production and "*" in allowed_origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=3600,
    )

    # Rate limiting (shared instance from rate_limit module)
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Too many requests. Please try again later."},
        )

    @app.exception_handler(ReferralCreditError)
    async def referral_credit_error_handler(request: Request, exc: ReferralCreditError):
        logger.info(
            "request_failed",
            path=request.url.path,
            error=exc.code,
            retryable=exc.retryable,
        )
        return error_response(exc)

    # Include v1 API routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(referral_router, prefix="/api/v1")
    app.include_router(purchases_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")
    app.include_router(dashboard_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint, including the ledger store."""
        store_ok = db.ping()
        body = {
            "status": "healthy" if store_ok else "degraded",
            "version": VERSION,
            "env": settings.env,
            "store": "ok" if store_ok else "unavailable",
        }
        if not store_ok:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
        return body

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Referral Credits API",
            "version": VERSION,
            "docs": "/api/docs",
        }

    return app


# Create app instance
app = create_app()
