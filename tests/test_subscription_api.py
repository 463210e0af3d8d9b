"""
Tests for the subscription REST endpoints.
"""

from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import stripe

from billing.usage import UsageService
from db.models import Payment, utcnow


def test_status_requires_auth(client):
    response = client.get("/api/subscription/status")
    assert response.status_code == 401


def test_status_without_subscription(client, auth_headers):
    response = client.get("/api/subscription/status", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"hasActiveSubscription": False, "subscription": None}


def test_status_with_subscription(client, user, auth_headers, make_subscription):
    make_subscription(user, cancel_at_period_end=True)

    data = client.get("/api/subscription/status", headers=auth_headers).json()

    assert data["hasActiveSubscription"] is True
    assert data["subscription"]["id"] == "sub_123"
    assert data["subscription"]["status"] == "active"
    assert data["subscription"]["cancelAtPeriodEnd"] is True
    assert "currentPeriodEnd" in data["subscription"]


def test_create_checkout_session(client, user, auth_headers):
    session = SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/pay/cs_test_1")

    with patch.object(stripe.Customer, "create", return_value=SimpleNamespace(id="cus_new")), \
            patch.object(stripe.checkout.Session, "create", return_value=session) as create:
        response = client.post(
            "/api/subscription/create-checkout-session",
            json={"priceId": "price_123"},
            headers=auth_headers,
        )

    assert response.status_code == 200
    assert response.json() == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.com/c/pay/cs_test_1"}
    kwargs = create.call_args.kwargs
    assert kwargs["success_url"] == "http://testserver/billing?success=true"
    assert kwargs["cancel_url"] == "http://testserver/billing?canceled=true"


def test_checkout_requires_price(client, auth_headers):
    response = client.post("/api/subscription/create-checkout-session", json={}, headers=auth_headers)
    assert response.status_code == 422


def test_checkout_provider_error_is_502(client, make_user):
    from api.auth import create_access_token

    user = make_user(customer_id="cus_123")
    headers = {"Authorization": f"Bearer {create_access_token(user.id)}"}

    with patch.object(stripe.checkout.Session, "create", side_effect=stripe.InvalidRequestError("No such price", "price")):
        response = client.post(
            "/api/subscription/create-checkout-session", json={"priceId": "price_bad"}, headers=headers
        )

    assert response.status_code == 502
    assert "No such price" not in response.text


def test_portal_requires_customer(client, auth_headers):
    response = client.post("/api/subscription/create-portal-session", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "No billing account found"


def test_portal_session(client, user, auth_headers, db):
    user.stripe_customer_id = "cus_123"
    db.commit()
    portal = SimpleNamespace(url="https://billing.stripe.com/p/session/test")

    with patch.object(stripe.billing_portal.Session, "create", return_value=portal) as create:
        response = client.post("/api/subscription/create-portal-session", headers=auth_headers)

    assert response.json() == {"url": "https://billing.stripe.com/p/session/test"}
    create.assert_called_once_with(customer="cus_123", return_url="http://testserver/billing")


def test_cancel_without_subscription(client, auth_headers):
    response = client.post("/api/subscription/cancel", headers=auth_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "No active subscription found"


def test_cancel_and_reactivate(client, user, auth_headers, make_subscription):
    make_subscription(user)

    with patch.object(stripe.Subscription, "modify") as modify:
        assert client.post("/api/subscription/cancel", headers=auth_headers).status_code == 200
        assert client.post("/api/subscription/reactivate", headers=auth_headers).status_code == 200

    assert [c.kwargs["cancel_at_period_end"] for c in modify.call_args_list] == [True, False]


def test_prices_are_public(client):
    price = {
        "id": "price_pro",
        "product": {"id": "prod_pro", "name": "Pro"},
        "unit_amount": 1900,
        "currency": "usd",
        "recurring": {"interval": "month", "interval_count": 1},
    }
    with patch.object(stripe.Price, "list", return_value=MagicMock(data=[price])):
        response = client.get("/api/subscription/prices")

    assert response.status_code == 200
    assert response.json()["prices"] == [{
        "id": "price_pro",
        "product": "prod_pro",
        "productName": "Pro",
        "unitAmount": 1900,
        "currency": "usd",
        "interval": "month",
        "intervalCount": 1,
    }]


def test_payments_history(client, user, auth_headers, db):
    for i in range(3):
        db.add(Payment(
            id=f"pi_{i}",
            user_id=user.id,
            stripe_customer_id="cus_123",
            stripe_invoice_id=f"in_{i}",
            amount=1900,
            currency="usd",
            status="succeeded",
            created_at=datetime(2024, 1 + i, 1),
            paid_at=utcnow(),
        ))
    db.commit()

    data = client.get("/api/subscription/payments?limit=2", headers=auth_headers).json()

    assert [p["id"] for p in data["payments"]] == ["pi_2", "pi_1"]
    assert data["payments"][0]["invoiceId"] == "in_2"


def test_payments_limit_bounds(client, auth_headers):
    response = client.get("/api/subscription/payments?limit=500", headers=auth_headers)
    assert response.status_code == 422


def test_usage_current_month(client, user, auth_headers, db):
    assert client.get("/api/subscription/usage", headers=auth_headers).json()["tokensIn"] == 0

    UsageService(db).record_usage(user.id, tokens_in=120, tokens_out=30)
    data = client.get("/api/subscription/usage", headers=auth_headers).json()

    assert data["tokensIn"] == 120
    assert data["tokensOut"] == 30
    assert data["totalRequests"] == 1
    assert data["reported"] is False
