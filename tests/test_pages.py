"""
Tests for the pricing, billing and login pages.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import stripe

from api.auth import create_access_token
from api.pages import format_interval, format_price
from conftest import PASSWORD
from utils.validators import safe_redirect_path

PRICE = {
    "id": "price_pro",
    "product": {"id": "prod_pro", "name": "Pro"},
    "unit_amount": 1900,
    "currency": "usd",
    "recurring": {"interval": "month", "interval_count": 1},
}


def login(client, user):
    client.cookies.set("access_token", create_access_token(user.id))


def test_format_price():
    assert format_price(1900, "usd") == "$19.00"
    assert format_price(123456, "eur") == "€1,234.56"
    assert format_price(500, "jpy") == "¥500"
    assert format_price(1000, "chf") == "10.00 CHF"
    assert format_price(None, "usd") == "Custom"


def test_format_interval():
    assert format_interval("month", 1) == "per month"
    assert format_interval("month", 3) == "per 3 months"
    assert format_interval(None, None) == ""


def test_safe_redirect_path():
    assert safe_redirect_path("/billing", "/") == "/billing"
    assert safe_redirect_path("//evil.example.com", "/billing") == "/billing"
    assert safe_redirect_path("https://evil.example.com", "/billing") == "/billing"
    assert safe_redirect_path(None, "/pricing") == "/pricing"


def test_pricing_page_lists_plans(client):
    with patch.object(stripe.Price, "list", return_value=MagicMock(data=[PRICE])):
        response = client.get("/pricing")

    assert response.status_code == 200
    assert "Pro" in response.text
    assert "$19.00" in response.text
    assert 'value="price_pro"' in response.text


def test_pricing_page_provider_error(client):
    with patch.object(stripe.Price, "list", side_effect=stripe.APIConnectionError("down")):
        response = client.get("/pricing")

    assert response.status_code == 200
    assert "Failed to load pricing plans" in response.text


def test_checkout_requires_login(client):
    response = client.post("/pricing/checkout", data={"price_id": "price_pro"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/login?redirect=/pricing"


def test_checkout_redirects_to_stripe(client, make_user):
    user = make_user(customer_id="cus_123")
    login(client, user)
    session = SimpleNamespace(id="cs_1", url="https://checkout.stripe.com/c/pay/cs_1")

    with patch.object(stripe.checkout.Session, "create", return_value=session):
        response = client.post("/pricing/checkout", data={"price_id": "price_pro"}, follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "https://checkout.stripe.com/c/pay/cs_1"


def test_billing_requires_login(client):
    response = client.get("/billing", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/login?redirect=/billing"


def test_billing_page_shows_subscription(client, user, make_subscription):
    make_subscription(user)
    login(client, user)

    response = client.get("/billing?success=true")

    assert response.status_code == 200
    assert "Subscription activated successfully!" in response.text
    assert "Current Subscription" in response.text
    assert "Cancel Subscription" in response.text


def test_billing_page_without_subscription(client, user):
    login(client, user)
    response = client.get("/billing")

    assert "No Active Subscription" in response.text
    assert "No payments yet." in response.text


def test_billing_cancel_form(client, user, make_subscription):
    make_subscription(user)
    login(client, user)

    with patch.object(stripe.Subscription, "modify"):
        response = client.post("/billing/cancel", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/billing?notice=canceled"


def test_billing_portal_without_customer(client, user):
    login(client, user)
    response = client.post("/billing/portal", follow_redirects=False)
    assert response.headers["location"] == "/billing?notice=no-customer"


def test_billing_portal_uses_subscription_customer(client, user, make_subscription):
    """A user row without a customer id falls back to the active subscription's customer."""
    make_subscription(user, customer_id="cus_from_sub")
    login(client, user)

    portal = SimpleNamespace(url="https://billing.stripe.com/p/session/test")
    with patch.object(stripe.billing_portal.Session, "create", return_value=portal) as create:
        response = client.post("/billing/portal", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == portal.url
    assert create.call_args.kwargs["customer"] == "cus_from_sub"


def test_login_form_sets_cookie(client, user):
    response = client.post(
        "/login",
        data={"email": user.email, "password": PASSWORD, "redirect": "/billing"},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"] == "/billing"
    assert "access_token" in response.cookies


def test_login_form_bad_password(client, user):
    response = client.post(
        "/login",
        data={"email": user.email, "password": "wrong-password", "redirect": "//evil.example.com"},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"] == "/login?error=true&redirect=/billing"
