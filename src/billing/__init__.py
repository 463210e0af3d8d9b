"""Billing and subscription management module."""

from billing.stripe_service import StripeService, serialize_price
from billing.webhook_handler import WebhookDispatcher, WebhookResult
from billing.usage import UsageService

__all__ = [
    "StripeService",
    "serialize_price",
    "WebhookDispatcher",
    "WebhookResult",
    "UsageService",
]
