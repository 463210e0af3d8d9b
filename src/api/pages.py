"""
Server-rendered pricing and billing pages.

Pages authenticate with the access_token cookie and use plain HTML forms;
every action redirects back (303) with a notice flag in the query string.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from loguru import logger
from sqlalchemy.orm import Session

from api.auth import authenticate, create_access_token, get_optional_user, set_auth_cookie
from api.subscription import billing_url, get_stripe_service
from billing.stripe_service import StripeService, serialize_price
from billing.usage import UsageService
from config.constants import ACCESS_TOKEN_COOKIE, PLAN_FEATURES
from core.exceptions import PaymentProviderError
from db.database import get_db
from db.models import User
from utils.validators import safe_redirect_path

TEMPLATES_DIR = Path(__file__).parent / "templates"

CURRENCY_SYMBOLS = {"usd": "$", "eur": "€", "gbp": "£", "jpy": "¥", "cad": "CA$", "aud": "A$"}

# Currencies whose minor unit is the unit itself
ZERO_DECIMAL_CURRENCIES = {"jpy", "krw", "vnd", "clp", "isk", "ugx", "xof", "xaf"}

NOTICES = {
    "canceled": "Your subscription will be canceled at the end of the billing period.",
    "reactivated": "Subscription reactivated successfully!",
    "no-subscription": "No active subscription found.",
    "no-customer": "You have no billing account yet. Subscribe to a plan first.",
    "provider-error": "The payment provider could not be reached. Please try again.",
    "checkout-error": "Failed to start checkout. Please try again.",
}

router = APIRouter(tags=["pages"], include_in_schema=False)


def format_price(amount: Optional[int], currency: str) -> str:
    """Format a minor-unit amount, e.g. 1900/usd -> '$19.00'; None -> 'Custom'."""
    if amount is None:
        return "Custom"
    code = (currency or "usd").lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        value = f"{amount:,}"
    else:
        value = f"{amount / 100:,.2f}"
    symbol = CURRENCY_SYMBOLS.get(code)
    return f"{symbol}{value}" if symbol else f"{value} {code.upper()}"


def format_interval(interval: Optional[str], count: Optional[int]) -> str:
    """'per month' for a single interval, 'per 3 months' otherwise, '' for one-off prices."""
    if not interval:
        return ""
    if count is None or count == 1:
        return f"per {interval}"
    return f"per {count} {interval}s"


def format_date(value, fmt: str = "%b %d, %Y") -> str:
    return value.strftime(fmt) if value else ""


templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["price"] = format_price
templates.env.filters["interval"] = format_interval
templates.env.filters["date"] = format_date


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


def _login_redirect(next_path: str) -> RedirectResponse:
    return _redirect(f"/login?redirect={quote(next_path)}")


@router.get("/pricing", response_class=HTMLResponse)
async def pricing_page(
    request: Request,
    notice: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Plan cards with a subscribe button per price."""
    error = None
    try:
        prices = [serialize_price(price) for price in service.get_prices()]
    except PaymentProviderError as e:
        logger.error(f"Failed to load prices for pricing page: {e}")
        prices = []
        error = "Failed to load pricing plans"

    return templates.TemplateResponse(
        request,
        "pricing.html",
        {
            "user": user,
            "prices": prices,
            "features": PLAN_FEATURES,
            "error": error,
            "notice": NOTICES.get(notice),
        },
    )


@router.post("/pricing/checkout")
async def pricing_checkout(
    price_id: str = Form(...),
    user: Optional[User] = Depends(get_optional_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Start Checkout for the chosen price and send the browser to Stripe."""
    if user is None:
        return _login_redirect("/pricing")

    try:
        session = service.create_checkout_session(
            user_id=user.id,
            email=user.email,
            price_id=price_id,
            success_url=billing_url(query="success=true"),
            cancel_url=billing_url(query="canceled=true"),
        )
    except PaymentProviderError as e:
        logger.error(f"Checkout from pricing page failed for user {user.id}: {e}")
        return _redirect("/pricing?notice=checkout-error")

    return _redirect(session.url)


@router.get("/billing", response_class=HTMLResponse)
async def billing_page(
    request: Request,
    success: bool = False,
    canceled: bool = False,
    notice: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    service: StripeService = Depends(get_stripe_service),
    db: Session = Depends(get_db)
):
    """Current subscription, payment history and usage, with management actions."""
    if user is None:
        return _login_redirect("/billing")

    banner = None
    if success:
        banner = ("success", "Subscription activated successfully!")
    elif canceled:
        banner = ("error", "Checkout canceled")

    return templates.TemplateResponse(
        request,
        "billing.html",
        {
            "user": user,
            "subscription": service.get_user_subscription(user.id),
            "payments": service.list_payments(user.id),
            "usage": UsageService(db).get_current_usage(user.id),
            "banner": banner,
            "notice": NOTICES.get(notice),
        },
    )


@router.post("/billing/cancel")
async def billing_cancel(
    user: Optional[User] = Depends(get_optional_user),
    service: StripeService = Depends(get_stripe_service)
):
    if user is None:
        return _login_redirect("/billing")

    subscription = service.get_user_subscription(user.id)
    if subscription is None:
        return _redirect("/billing?notice=no-subscription")
    try:
        service.cancel_subscription(subscription.id)
    except PaymentProviderError:
        return _redirect("/billing?notice=provider-error")
    return _redirect("/billing?notice=canceled")


@router.post("/billing/reactivate")
async def billing_reactivate(
    user: Optional[User] = Depends(get_optional_user),
    service: StripeService = Depends(get_stripe_service)
):
    if user is None:
        return _login_redirect("/billing")

    subscription = service.get_user_subscription(user.id)
    if subscription is None:
        return _redirect("/billing?notice=no-subscription")
    try:
        service.reactivate_subscription(subscription.id)
    except PaymentProviderError:
        return _redirect("/billing?notice=provider-error")
    return _redirect("/billing?notice=reactivated")


@router.post("/billing/portal")
async def billing_portal(
    user: Optional[User] = Depends(get_optional_user),
    service: StripeService = Depends(get_stripe_service)
):
    """Open the Stripe billing portal (payment methods, invoices)."""
    if user is None:
        return _login_redirect("/billing")
    customer_id = service.get_customer_id(user)
    if not customer_id:
        return _redirect("/billing?notice=no-customer")

    try:
        session = service.create_billing_portal_session(customer_id, billing_url())
    except PaymentProviderError:
        return _redirect("/billing?notice=provider-error")
    return _redirect(session.url)


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, redirect: str = "/billing", error: bool = False):
    return templates.TemplateResponse(
        request,
        "login.html",
        {"redirect": safe_redirect_path(redirect, "/billing"), "error": error},
    )


@router.post("/login")
async def login_form(
    email: str = Form(...),
    password: str = Form(...),
    redirect: str = Form("/billing"),
    db: Session = Depends(get_db)
):
    target = safe_redirect_path(redirect, "/billing")
    user = authenticate(db, email, password)
    if user is None:
        return _redirect(f"/login?error=true&redirect={quote(target)}")

    response = _redirect(target)
    set_auth_cookie(response, create_access_token(user.id))
    return response


@router.post("/logout")
async def logout_form():
    response = _redirect("/pricing")
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return response
