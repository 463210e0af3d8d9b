"""
Webhook endpoints.

Called by Stripe, not by users: no authentication, requests are verified by signature.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from loguru import logger
from sqlalchemy.orm import Session

from billing.stripe_service import StripeService
from billing.webhook_handler import WebhookDispatcher
from config.settings import get_settings
from core.exceptions import WebhookSignatureError
from db.database import get_db

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db)
):
    """Handle Stripe webhook events."""
    payload = await request.body()

    if not stripe_signature:
        logger.error("Missing stripe-signature header")
        raise HTTPException(status_code=400, detail="Missing signature")

    webhook_secret = get_settings().stripe_webhook_secret
    if not webhook_secret:
        logger.error("BILLING_STRIPE_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook endpoint not configured")

    service = StripeService(db)
    try:
        event = service.verify_webhook_signature(payload, stripe_signature, webhook_secret)
    except WebhookSignatureError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail=e.message)

    result = await WebhookDispatcher(service).dispatch(event)
    return result.to_response()
