"""
Error tracking and global exception handling for the billing service.

Integrates Sentry for production error aggregation and maps billing errors to HTTP responses.
"""

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
import logging

from core.exceptions import (
    CustomerNotFoundError,
    PaymentProviderError,
    SubscriptionNotFoundError,
)


def init_sentry(
    dsn: str,
    environment: str,
    sample_rate: float = 0.1,
    debug: bool = False
) -> None:
    """
    Initialize Sentry with FastAPI integration.

    Args:
        dsn: Sentry DSN from dashboard
        environment: 'development' or 'production'
        sample_rate: Traces sample rate (1.0 for dev, 0.1 for prod)
        debug: Enable debug mode (verbose logging)
    """
    if not dsn:
        logger.warning("SENTRY_DSN not configured - error tracking disabled")
        return

    traces_sample_rate = 1.0 if environment == "development" else sample_rate

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        debug=debug,
        integrations=[
            FastApiIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR
            )
        ],
        # Drop health check transactions
        before_send_transaction=_drop_noisy_transactions,
        before_send=_filter_sensitive_data
    )

    logger.info(f"Sentry initialized: environment={environment}, traces_sample_rate={traces_sample_rate}")


def _drop_noisy_transactions(event, hint):
    if event.get("transaction", "").startswith("/health"):
        return None
    return event


def _filter_sensitive_data(event, hint):
    """
    Filter sensitive data before sending to Sentry.

    Removes: Authorization headers, cookies, webhook signatures, secrets.
    """
    if "request" in event:
        event["request"]["headers"] = {
            k: v for k, v in event["request"].get("headers", {}).items()
            if k.lower() not in ["authorization", "cookie", "stripe-signature"]
        }
        event["request"].pop("cookies", None)

    if "extra" in event:
        sensitive_keys = ["password", "token", "api_key", "secret", "jwt_secret", "stripe_secret_key"]
        for key in sensitive_keys:
            event["extra"].pop(key, None)

    return event


async def sentry_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler that captures errors in Sentry.

    Handles all uncaught exceptions, logs them, and returns a generic error message.
    """
    sentry_sdk.capture_exception(exc)

    logger.opt(exception=exc).error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}"
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Our team has been notified."}
    )


async def payment_provider_exception_handler(request: Request, exc: PaymentProviderError) -> JSONResponse:
    """Provider failures surface as 502 without leaking provider details."""
    logger.error(f"Payment provider error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": "Payment provider request failed. Please try again."}
    )


async def not_found_exception_handler(
    request: Request, exc: SubscriptionNotFoundError | CustomerNotFoundError
) -> JSONResponse:
    if isinstance(exc, CustomerNotFoundError):
        detail = "No billing account found"
    else:
        detail = "No active subscription found"
    return JSONResponse(status_code=404, content={"detail": detail})


def set_user_context(user_id: str, email: str = None, username: str = None) -> None:
    """
    Set user context in Sentry for error tracking.

    Call this after authentication to associate errors with users.
    """
    sentry_sdk.set_user({
        "id": user_id,
        "email": email,
        "username": username
    })
