"""
Shared fixtures: in-memory database, app client, users and Stripe payloads.
"""

import hashlib
import hmac
import json
import os
import time

os.environ["BILLING_JWT_SECRET"] = "test-jwt-secret-for-the-billing-suite-0123456789"
os.environ["BILLING_STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["BILLING_STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["BILLING_DATABASE_URL"] = "sqlite://"
os.environ["BILLING_APP_BASE_URL"] = "http://testserver"
os.environ["BILLING_SENDGRID_SANDBOX_MODE"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from config.settings import reload_settings
from db.database import Base, SessionLocal, configure_engine, get_db
from db.models import Subscription, User, utcnow

reload_settings()
engine = configure_engine("sqlite://", poolclass=StaticPool)

WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "correct-horse-battery"


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def app(db):
    from api.app import create_app

    application = create_app()
    application.dependency_overrides[get_db] = lambda: db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    """Factory creating persisted users."""
    from api.auth import hash_password

    counter = {"n": 0}

    def _make(email=None, customer_id=None, name="Test User"):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            password_hash=hash_password(PASSWORD),
            name=name,
            stripe_customer_id=customer_id,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user(email="alice@example.com", name="Alice")


@pytest.fixture
def auth_headers(user):
    from api.auth import create_access_token
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def make_subscription(db):
    """Factory inserting a local subscription row."""
    from datetime import timedelta

    def _make(user, sub_id="sub_123", status="active", customer_id="cus_123", cancel_at_period_end=False):
        now = utcnow()
        row = Subscription(
            id=sub_id,
            user_id=user.id,
            stripe_customer_id=customer_id,
            stripe_price_id="price_123",
            stripe_product_id="prod_123",
            status=status,
            cancel_at_period_end=cancel_at_period_end,
            current_period_start=now,
            current_period_end=now + timedelta(days=30),
        )
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def subscription_object():
    """Builder for Stripe subscription payloads."""

    def _build(sub_id="sub_123", customer="cus_123", status="active", user_id=None, **overrides):
        now = int(time.time())
        obj = {
            "id": sub_id,
            "object": "subscription",
            "customer": customer,
            "status": status,
            "cancel_at_period_end": False,
            "current_period_start": now,
            "current_period_end": now + 30 * 86400,
            "canceled_at": None,
            "trial_start": None,
            "trial_end": None,
            "metadata": {"user_id": user_id} if user_id else {},
            "items": {
                "object": "list",
                "data": [{"id": "si_123", "price": {"id": "price_123", "product": "prod_123"}}],
            },
        }
        obj.update(overrides)
        return obj

    return _build


@pytest.fixture
def invoice_object():
    """Builder for Stripe invoice payloads."""

    def _build(invoice_id="in_123", subscription="sub_123", customer="cus_123", **overrides):
        obj = {
            "id": invoice_id,
            "object": "invoice",
            "customer": customer,
            "subscription": subscription,
            "payment_intent": "pi_123",
            "amount_paid": 1900,
            "amount_due": 1900,
            "currency": "usd",
            "description": None,
            "hosted_invoice_url": "https://invoice.stripe.com/i/test",
            "metadata": {},
            "status_transitions": {"paid_at": int(time.time())},
        }
        obj.update(overrides)
        return obj

    return _build


def make_event(event_type, obj, event_id="evt_123"):
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for `payload`."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def event():
    return make_event


@pytest.fixture
def signed_event():
    """Serialize an event and sign it; returns (body, headers)."""

    def _sign(event_dict, secret=WEBHOOK_SECRET, timestamp=None):
        body = json.dumps(event_dict)
        return body, {"Stripe-Signature": sign_payload(body, secret, timestamp), "Content-Type": "application/json"}

    return _sign
