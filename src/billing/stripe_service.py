"""
Stripe service wrapper for subscription management.

Owns every call to the Stripe SDK and mirrors provider state into the
subscriptions and payments tables.
"""

import json
from typing import Any, Dict, List, Optional

import stripe
from loguru import logger
from sqlalchemy.orm import Session

from config.constants import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    CANCELED_STATUS,
    CHECKOUT_PAYMENT_METHOD_TYPES,
    DEFAULT_CURRENCY,
    DEFAULT_PAYMENT_DESCRIPTION,
    DEFAULT_PAYMENTS_LIMIT,
    LEGACY_USER_ID_METADATA_KEYS,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_SUCCEEDED,
    USER_ID_METADATA_KEY,
)
from config.settings import get_settings
from core.exceptions import (
    ConfigurationError,
    PaymentProviderError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from db.models import Payment, Subscription, User, from_timestamp, utcnow


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a webhook dict or a Stripe SDK object."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key)
    else:
        try:
            value = obj[key]
        except (KeyError, TypeError):
            value = getattr(obj, key, None)
    return default if value is None else value


def object_id(value: Any) -> Optional[str]:
    """Return the id of an expandable field (plain id string or expanded object)."""
    if value is None or isinstance(value, str):
        return value
    return field(value, "id")


def metadata_user_id(metadata: Any) -> Optional[str]:
    """Extract the local user id from provider metadata."""
    if not metadata:
        return None
    for key in (USER_ID_METADATA_KEY, *LEGACY_USER_ID_METADATA_KEYS):
        user_id = field(metadata, key)
        if user_id:
            return user_id
    return None


def first_subscription_item(subscription: Any) -> Any:
    items = field(field(subscription, "items"), "data") or []
    if not items:
        raise WebhookPayloadError(
            "Subscription has no items",
            {"subscription_id": field(subscription, "id")}
        )
    return items[0]


def subscription_period(subscription: Any) -> tuple:
    """
    Current period bounds as unix timestamps.

    Newer API versions only carry the period on subscription items.
    """
    start = field(subscription, "current_period_start")
    end = field(subscription, "current_period_end")
    if start is None or end is None:
        item = first_subscription_item(subscription)
        start = field(item, "current_period_start")
        end = field(item, "current_period_end")
    if start is None or end is None:
        raise WebhookPayloadError(
            "Subscription has no current period",
            {"subscription_id": field(subscription, "id")}
        )
    return start, end


def invoice_subscription_details(invoice: Any) -> Any:
    """Subscription details of an invoice in either the legacy or the `parent` layout."""
    details = field(field(invoice, "parent"), "subscription_details")
    return details if details is not None else field(invoice, "subscription_details")


def invoice_subscription_id(invoice: Any) -> Optional[str]:
    subscription = field(invoice, "subscription")
    if subscription is None:
        subscription = field(invoice_subscription_details(invoice), "subscription")
    return object_id(subscription)


def invoice_payment_id(invoice: Any) -> str:
    """Payment row id: the payment intent, else a synthetic id derived from the invoice."""
    payment_intent = object_id(field(invoice, "payment_intent"))
    return payment_intent or f"pi_{field(invoice, 'id')}"


class StripeService:
    """
    Wrapper for the Stripe API backed by the local billing tables.

    Every SDK error is re-raised as PaymentProviderError.
    """

    def __init__(self, db: Session, api_key: Optional[str] = None):
        settings = get_settings()
        self.db = db
        self.api_key = api_key or settings.stripe_secret_key
        if not self.api_key:
            raise ConfigurationError("BILLING_STRIPE_SECRET_KEY environment variable is required")

        stripe.api_key = self.api_key
        if settings.stripe_api_version:
            stripe.api_version = settings.stripe_api_version

    # ==================== Customers ====================

    def get_or_create_customer(self, user_id: str, email: str, name: Optional[str] = None) -> str:
        """Return the user's Stripe customer id, creating the customer on first use."""
        user = self.db.get(User, user_id)
        if user is not None and user.stripe_customer_id:
            return user.stripe_customer_id

        existing = (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .first()
        )
        if existing is not None and existing.stripe_customer_id:
            customer_id = existing.stripe_customer_id
        else:
            try:
                customer = stripe.Customer.create(
                    email=email,
                    name=name,
                    metadata={USER_ID_METADATA_KEY: user_id},
                )
            except stripe.StripeError as e:
                logger.error(f"Failed to create Stripe customer for user {user_id}: {e}")
                raise PaymentProviderError.from_stripe("create customer", e) from e
            customer_id = customer.id
            logger.info(f"Created Stripe customer {customer_id} for user {user_id}")

        if user is not None:
            user.stripe_customer_id = customer_id
            self.db.commit()
        return customer_id

    # ==================== Checkout & portal ====================

    def create_checkout_session(
        self,
        user_id: str,
        email: str,
        price_id: str,
        success_url: str,
        cancel_url: str
    ) -> stripe.checkout.Session:
        """Create a subscription-mode Checkout session for `price_id`."""
        customer_id = self.get_or_create_customer(user_id, email)
        metadata = {USER_ID_METADATA_KEY: user_id}

        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=list(CHECKOUT_PAYMENT_METHOD_TYPES),
                line_items=[{"price": price_id, "quantity": 1}],
                client_reference_id=user_id,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.error(f"Checkout session creation failed for user {user_id}, price {price_id}: {e}")
            raise PaymentProviderError.from_stripe("create checkout session", e) from e

        logger.info(f"Checkout session {session.id} created for user {user_id} (price {price_id})")
        return session

    def get_customer_id(self, user: User) -> Optional[str]:
        """The user's customer id, else the one on their active subscription."""
        if user.stripe_customer_id:
            return user.stripe_customer_id
        subscription = self.get_user_subscription(user.id)
        return subscription.stripe_customer_id if subscription else None

    def create_billing_portal_session(self, customer_id: str, return_url: str) -> stripe.billing_portal.Session:
        """Create a billing portal session for managing subscriptions."""
        try:
            return stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
        except stripe.StripeError as e:
            logger.error(f"Billing portal session creation failed for customer {customer_id}: {e}")
            raise PaymentProviderError.from_stripe("create billing portal session", e) from e

    # ==================== Subscriptions ====================

    def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
        """Get the user's newest subscription in an active status."""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES),
            )
            .order_by(Subscription.created_at.desc())
            .first()
        )

    def has_active_subscription(self, user_id: str) -> bool:
        return self.get_user_subscription(user_id) is not None

    def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription at period end."""
        self._set_cancel_at_period_end(subscription_id, True)
        logger.info(f"Subscription {subscription_id} set to cancel at period end")

    def reactivate_subscription(self, subscription_id: str) -> None:
        """Undo a pending cancellation."""
        self._set_cancel_at_period_end(subscription_id, False)
        logger.info(f"Subscription {subscription_id} reactivated")

    def _set_cancel_at_period_end(self, subscription_id: str, value: bool) -> None:
        try:
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=value)
        except stripe.StripeError as e:
            logger.error(f"Failed to update subscription {subscription_id}: {e}")
            raise PaymentProviderError.from_stripe("update subscription", e) from e

        row = self.db.get(Subscription, subscription_id)
        if row is not None:
            row.cancel_at_period_end = value
            row.updated_at = utcnow()
            self.db.commit()

    # ==================== Webhook reconciliation ====================

    def resolve_user_id(self, metadata: Any, customer_id: Optional[str]) -> Optional[str]:
        """Find the local user behind a provider object: metadata first, then customer owner."""
        user_id = metadata_user_id(metadata)
        if user_id and self.db.get(User, user_id) is not None:
            return user_id
        if user_id:
            logger.warning(f"Metadata references unknown user {user_id}")

        if customer_id:
            user = self.db.query(User).filter(User.stripe_customer_id == customer_id).first()
            if user is not None:
                return user.id
        return None

    def upsert_subscription(self, subscription: Any) -> Subscription:
        """Insert or refresh the local mirror of a provider subscription (no commit)."""
        subscription_id = field(subscription, "id")
        customer_id = object_id(field(subscription, "customer"))
        row = self.db.get(Subscription, subscription_id)

        if row is None:
            user_id = self.resolve_user_id(field(subscription, "metadata"), customer_id)
            if not user_id:
                raise WebhookPayloadError(
                    "No user for subscription",
                    {"subscription_id": subscription_id, "customer_id": customer_id}
                )
            row = Subscription(id=subscription_id, user_id=user_id)
            self.db.add(row)

        item = first_subscription_item(subscription)
        price = field(item, "price")
        period_start, period_end = subscription_period(subscription)
        status = field(subscription, "status")
        canceled_at = from_timestamp(field(subscription, "canceled_at"))

        # Canceled is terminal on the provider side; a late event must not revive it
        if row.status == CANCELED_STATUS and status != CANCELED_STATUS:
            logger.info(f"Ignoring status {status} for canceled subscription {subscription_id}")
            status = CANCELED_STATUS
            canceled_at = canceled_at or row.canceled_at

        row.stripe_customer_id = customer_id
        row.stripe_price_id = field(price, "id")
        row.stripe_product_id = object_id(field(price, "product"))
        row.status = status
        row.cancel_at_period_end = bool(field(subscription, "cancel_at_period_end", False))
        row.current_period_start = from_timestamp(period_start)
        row.current_period_end = from_timestamp(period_end)
        row.canceled_at = canceled_at
        row.trial_start = from_timestamp(field(subscription, "trial_start"))
        row.trial_end = from_timestamp(field(subscription, "trial_end"))
        row.updated_at = utcnow()

        user = self.db.get(User, row.user_id)
        if user is not None and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
        return row

    def handle_subscription_created(self, subscription: Any) -> Subscription:
        row = self.upsert_subscription(subscription)
        self.db.commit()
        return row

    def handle_subscription_updated(self, subscription: Any) -> Subscription:
        row = self.upsert_subscription(subscription)
        self.db.commit()
        return row

    def handle_subscription_deleted(self, subscription: Any) -> Optional[Subscription]:
        subscription_id = field(subscription, "id")
        row = self.db.get(Subscription, subscription_id)
        if row is None:
            try:
                row = self.upsert_subscription(subscription)
            except WebhookPayloadError as e:
                logger.warning(f"Deleted subscription {subscription_id} unknown locally: {e}")
                return None

        row.status = CANCELED_STATUS
        row.canceled_at = from_timestamp(field(subscription, "canceled_at")) or utcnow()
        row.updated_at = utcnow()
        self.db.commit()
        return row

    def ensure_subscription(self, subscription_id: Optional[str]) -> Optional[Subscription]:
        """Return the local subscription, fetching and mirroring it when missing."""
        if not subscription_id:
            return None
        row = self.db.get(Subscription, subscription_id)
        if row is not None:
            return row

        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise PaymentProviderError.from_stripe("retrieve subscription", e) from e
        row = self.upsert_subscription(subscription)
        # Payment rows reference it by foreign key
        self.db.flush()
        return row

    def handle_checkout_completed(self, session: Any) -> Optional[str]:
        """Link the checkout customer to the user and mirror the new subscription."""
        customer_id = object_id(field(session, "customer"))
        user_id = field(session, "client_reference_id") or metadata_user_id(field(session, "metadata"))
        user = self.db.get(User, user_id) if user_id else None

        if user is None:
            logger.warning(f"Checkout session {field(session, 'id')} has no known user")
            return None

        if customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
            # Owner lookup by customer id below must see the link
            self.db.flush()
        self.ensure_subscription(object_id(field(session, "subscription")))
        self.db.commit()
        return user.id

    def _upsert_invoice_payment(self, invoice: Any, status: str) -> Optional[Payment]:
        subscription_id = invoice_subscription_id(invoice)
        customer_id = object_id(field(invoice, "customer"))
        subscription = self.ensure_subscription(subscription_id)

        user_id = (
            metadata_user_id(field(invoice, "metadata"))
            or metadata_user_id(field(invoice_subscription_details(invoice), "metadata"))
        )
        if user_id and self.db.get(User, user_id) is None:
            user_id = None
        if not user_id and subscription is not None:
            user_id = subscription.user_id
        if not user_id:
            user_id = self.resolve_user_id(None, customer_id)
        if not user_id:
            logger.warning(f"No user for invoice {field(invoice, 'id')}, payment not recorded")
            return None

        payment_id = invoice_payment_id(invoice)
        row = self.db.get(Payment, payment_id)
        if row is None:
            row = Payment(id=payment_id)
            self.db.add(row)

        if status == PAYMENT_STATUS_SUCCEEDED:
            amount = field(invoice, "amount_paid", 0)
            paid_at = from_timestamp(field(field(invoice, "status_transitions"), "paid_at")) or utcnow()
        else:
            amount = field(invoice, "amount_due", 0)
            paid_at = None

        row.user_id = user_id
        row.subscription_id = subscription.id if subscription is not None else None
        row.stripe_invoice_id = field(invoice, "id")
        row.stripe_customer_id = customer_id
        row.amount = amount or 0
        row.currency = field(invoice, "currency") or DEFAULT_CURRENCY
        row.status = status
        row.description = field(invoice, "description") or DEFAULT_PAYMENT_DESCRIPTION
        row.receipt_url = field(invoice, "hosted_invoice_url")
        row.paid_at = paid_at
        self.db.commit()
        return row

    def handle_invoice_payment_succeeded(self, invoice: Any) -> Optional[Payment]:
        return self._upsert_invoice_payment(invoice, PAYMENT_STATUS_SUCCEEDED)

    def handle_invoice_payment_failed(self, invoice: Any) -> Optional[Payment]:
        """Record the failed attempt; Stripe's smart retries take it from here."""
        existing = self.db.get(Payment, invoice_payment_id(invoice))
        if existing is not None and existing.status == PAYMENT_STATUS_SUCCEEDED:
            logger.info(f"Payment {existing.id} already succeeded, ignoring failure event")
            return existing
        return self._upsert_invoice_payment(invoice, PAYMENT_STATUS_FAILED)

    def verify_webhook_signature(self, payload: bytes | str, signature: str, webhook_secret: str) -> Dict[str, Any]:
        """
        Verify the Stripe-Signature header and decode the event.

        Returns the event as a plain dict.

        Raises:
            WebhookSignatureError: Bad signature, stale timestamp or malformed payload
        """
        if not webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise WebhookSignatureError("Invalid payload", {"error": str(e)}) from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError("Invalid signature", {"error": str(e)}) from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookSignatureError("Invalid payload", {"error": str(e)}) from e
        if not isinstance(event, dict) or "type" not in event:
            raise WebhookSignatureError("Invalid payload", {"error": "not an event object"})
        return event

    # ==================== Catalog ====================

    def get_prices(self, product_id: Optional[str] = None) -> List[Any]:
        """List active prices with their product expanded."""
        params: Dict[str, Any] = {"active": True, "expand": ["data.product"]}
        if product_id:
            params["product"] = product_id
        try:
            return list(stripe.Price.list(**params).data)
        except stripe.StripeError as e:
            logger.error(f"Failed to list prices: {e}")
            raise PaymentProviderError.from_stripe("list prices", e) from e

    def get_products(self) -> List[Any]:
        try:
            return list(stripe.Product.list(active=True).data)
        except stripe.StripeError as e:
            logger.error(f"Failed to list products: {e}")
            raise PaymentProviderError.from_stripe("list products", e) from e

    # ==================== History ====================

    def list_payments(self, user_id: str, limit: int = DEFAULT_PAYMENTS_LIMIT) -> List[Payment]:
        """Local payment history, newest first."""
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .all()
        )


def serialize_price(price: Any) -> Dict[str, Any]:
    """Flatten a Stripe price (product expanded or not) for the API and pages."""
    product = field(price, "product")
    recurring = field(price, "recurring")
    return {
        "id": field(price, "id"),
        "product": object_id(product),
        "productName": None if isinstance(product, str) else field(product, "name"),
        "unitAmount": field(price, "unit_amount"),
        "currency": field(price, "currency") or DEFAULT_CURRENCY,
        "interval": field(recurring, "interval"),
        "intervalCount": field(recurring, "interval_count"),
    }
