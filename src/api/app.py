"""
FastAPI application for the billing service.

Serves the subscription REST API, the Stripe webhook endpoint and the pricing/billing pages.
"""

import time

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Rate limiting
from slowapi.errors import RateLimitExceeded

from config.settings import get_settings
from core.exceptions import CustomerNotFoundError, PaymentProviderError, SubscriptionNotFoundError
from api.rate_limit import limiter

from api.auth import router as auth_router
from api.health import router as health_router
from api.subscription import router as subscription_router
from api.webhooks import router as webhooks_router
from api.pages import router as pages_router

from middleware.error_handler import (
    init_sentry,
    sentry_exception_handler,
    payment_provider_exception_handler,
    not_found_exception_handler,
)

# Import correlation ID middleware
from asgi_correlation_id import CorrelationIdMiddleware, correlation_id

# Import structured logging
from loguru import logger
from config.logging_config import setup_structured_logging


# ============================================================================
# Security Headers Middleware
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Referrer policy
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # HSTS only for HTTPS (skip in development)
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with correlation ID, method, path, status, latency."""

    async def dispatch(self, request: Request, call_next):
        request_id = correlation_id.get() or request.headers.get("X-Request-ID", "unknown")
        start_time = time.time()

        with logger.contextualize(correlation_id=request_id):
            logger.info(f"{request.method} {request.url.path}")

            response = await call_next(request)

            latency_ms = (time.time() - start_time) * 1000
            user_id = getattr(request.state, "user_id", None)
            logger.bind(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=round(latency_ms, 2),
                user_id=user_id,
            ).info(f"{request.method} {request.url.path} -> {response.status_code}")

            return response


# ============================================================================
# Application Factory
# ============================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="Subscription Billing",
        description="Stripe-backed subscriptions, payments and usage billing",
        version="1.0.0"
    )

    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"detail": "Too many requests. Please try again later."},
            headers={"Retry-After": "60"}
        )

    app.add_exception_handler(PaymentProviderError, payment_provider_exception_handler)
    app.add_exception_handler(SubscriptionNotFoundError, not_found_exception_handler)
    app.add_exception_handler(CustomerNotFoundError, not_found_exception_handler)

    # Global exception handler for Sentry
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        return await sentry_exception_handler(request, exc)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_middleware(SecurityHeadersMiddleware)

    app.add_middleware(RequestLoggingMiddleware)

    # Generates/reads X-Request-ID; added last so it runs first
    app.add_middleware(CorrelationIdMiddleware, validator=None)

    @app.on_event("startup")
    async def startup_event():
        setup_structured_logging(level=settings.log_level, log_file=settings.log_file)
        logger.info("Structured logging initialized with correlation ID support")

        init_sentry(
            dsn=settings.sentry_dsn,
            environment=settings.sentry_environment,
            sample_rate=settings.sentry_traces_sample_rate,
            debug=(settings.sentry_environment == "development")
        )

        from db import init_db
        init_db()
        logger.info("Database initialized")

    app.include_router(auth_router, prefix="/api")
    app.include_router(subscription_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")
    app.include_router(health_router, tags=["health"])
    app.include_router(pages_router)

    return app
