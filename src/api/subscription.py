"""Subscription management API endpoints."""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from loguru import logger

from api.auth import get_current_user
from api.rate_limit import limiter
from api.schemas import (
    CheckoutSessionRequest, CheckoutSessionResponse, PortalSessionResponse,
    SubscriptionStatusResponse, SubscriptionSummary, MessageResponse,
    PriceInfo, PricesResponse, PaymentInfo, PaymentsResponse, UsageResponse,
)
from billing.stripe_service import StripeService, serialize_price
from billing.usage import UsageService
from config.constants import DEFAULT_PAYMENTS_LIMIT, MAX_PAYMENTS_LIMIT
from config.settings import get_settings
from core.exceptions import CustomerNotFoundError, SubscriptionNotFoundError
from db.database import get_db
from db.models import Payment, User

router = APIRouter(prefix="/subscription", tags=["subscription"])


def get_stripe_service(db: Session = Depends(get_db)) -> StripeService:
    """Dependency building a request-scoped Stripe service."""
    return StripeService(db)


def billing_url(path: str = "/billing", query: str = "") -> str:
    """Absolute URL of a billing page, used for provider redirects."""
    url = f"{get_settings().app_base_url}{path}"
    return f"{url}?{query}" if query else url


def payment_info(payment: Payment) -> PaymentInfo:
    return PaymentInfo(
        id=payment.id,
        subscription_id=payment.subscription_id,
        invoice_id=payment.stripe_invoice_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        description=payment.description,
        receipt_url=payment.receipt_url,
        created_at=payment.created_at,
        paid_at=payment.paid_at,
    )


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
@limiter.limit(lambda: get_settings().checkout_rate_limit)
async def create_checkout_session(
    request: Request,
    body: CheckoutSessionRequest,
    current_user: User = Depends(get_current_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Create Stripe Checkout session for a subscription price."""
    success_url = str(body.success_url) if body.success_url else billing_url(query="success=true")
    cancel_url = str(body.cancel_url) if body.cancel_url else billing_url(query="canceled=true")

    session = service.create_checkout_session(
        user_id=current_user.id,
        email=current_user.email,
        price_id=body.price_id,
        success_url=success_url,
        cancel_url=cancel_url,
    )
    return CheckoutSessionResponse(session_id=session.id, url=session.url)


@router.post("/create-portal-session", response_model=PortalSessionResponse)
async def create_portal_session(
    current_user: User = Depends(get_current_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Create a billing portal session for the user's Stripe customer."""
    customer_id = service.get_customer_id(current_user)
    if not customer_id:
        raise CustomerNotFoundError(current_user.id)

    session = service.create_billing_portal_session(customer_id, billing_url())
    return PortalSessionResponse(url=session.url)


@router.get("/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: User = Depends(get_current_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Get current user's subscription status."""
    subscription = service.get_user_subscription(current_user.id)
    if subscription is None:
        return SubscriptionStatusResponse(has_active_subscription=False)

    return SubscriptionStatusResponse(
        has_active_subscription=True,
        subscription=SubscriptionSummary(
            id=subscription.id,
            status=subscription.status,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=bool(subscription.cancel_at_period_end),
        ),
    )


@router.post("/cancel", response_model=MessageResponse)
async def cancel_subscription(
    current_user: User = Depends(get_current_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Cancel the active subscription at the end of the billing period."""
    subscription = service.get_user_subscription(current_user.id)
    if subscription is None:
        raise SubscriptionNotFoundError(current_user.id)

    service.cancel_subscription(subscription.id)
    logger.info(f"User {current_user.id} canceled subscription {subscription.id}")
    return MessageResponse(message="Subscription will be canceled at the end of the billing period")


@router.post("/reactivate", response_model=MessageResponse)
async def reactivate_subscription(
    current_user: User = Depends(get_current_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Undo a pending cancellation."""
    subscription = service.get_user_subscription(current_user.id)
    if subscription is None:
        raise SubscriptionNotFoundError(current_user.id)

    service.reactivate_subscription(subscription.id)
    logger.info(f"User {current_user.id} reactivated subscription {subscription.id}")
    return MessageResponse(message="Subscription reactivated successfully")


@router.get("/prices", response_model=PricesResponse)
async def get_prices(service: StripeService = Depends(get_stripe_service)):
    """List available pricing plans (public)."""
    prices = [PriceInfo(**serialize_price(price)) for price in service.get_prices()]
    return PricesResponse(prices=prices)


@router.get("/payments", response_model=PaymentsResponse)
async def get_payments(
    limit: int = Query(DEFAULT_PAYMENTS_LIMIT, ge=1, le=MAX_PAYMENTS_LIMIT),
    current_user: User = Depends(get_current_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Get the user's payment history, newest first."""
    payments = service.list_payments(current_user.id, limit=limit)
    return PaymentsResponse(payments=[payment_info(p) for p in payments])


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get metered usage for the current month."""
    record = UsageService(db).get_current_usage(current_user.id)
    if record is None:
        return UsageResponse()

    return UsageResponse(
        tokens_in=record.tokens_in or 0,
        tokens_out=record.tokens_out or 0,
        total_requests=record.total_requests or 0,
        total_cost=record.total_cost or 0.0,
        period_start=record.period_start,
        period_end=record.period_end,
        reported=bool(record.reported),
    )
