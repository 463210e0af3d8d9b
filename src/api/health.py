"""
Health check endpoint for the billing service.

Reports database connectivity and whether Stripe is set up to take
payments and webhooks. Load balancers only act on the status code.
"""

from fastapi import APIRouter, HTTPException
from sqlalchemy import text
from db import SessionLocal, get_engine
from loguru import logger

from config.settings import get_settings

router = APIRouter()


def billing_config_status() -> dict:
    """'configured' or 'missing' for each Stripe setting the service depends on."""
    settings = get_settings()
    return {
        "stripe": "configured" if settings.stripe_secret_key else "missing",
        "webhooks": "configured" if settings.stripe_webhook_secret else "missing",
        "email": "sandbox" if settings.sendgrid_sandbox_mode else "live",
    }


@router.get("/health")
async def health_check():
    """
    Health check endpoint with database and billing configuration status.

    Returns:
        JSON with status, version, database connection status and billing
        configuration. HTTP 200 if the database answers ("degraded" when the
        webhook secret is missing), 503 if it does not.
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "database": "unknown",
        "billing": billing_config_status(),
    }

    if health_status["billing"]["webhooks"] == "missing":
        # Subscription state cannot be reconciled without webhooks
        health_status["status"] = "degraded"

    try:
        get_engine()
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"
        logger.error(f"Health check failed: {e}")
        raise HTTPException(
            status_code=503,
            detail=health_status
        )

    return health_status
