"""
Core module for the billing service.

Exports the exception hierarchy shared by every layer.
"""

from core.exceptions import (
    BillingError,
    ConfigurationError,
    PaymentProviderError,
    SubscriptionNotFoundError,
    CustomerNotFoundError,
    WebhookError,
    WebhookSignatureError,
    WebhookPayloadError,
    UsageReportingError,
)

__all__ = [
    'BillingError',
    'ConfigurationError',
    'PaymentProviderError',
    'SubscriptionNotFoundError',
    'CustomerNotFoundError',
    'WebhookError',
    'WebhookSignatureError',
    'WebhookPayloadError',
    'UsageReportingError',
]
