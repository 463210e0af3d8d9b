"""
Constants and configuration values for the billing service.

Defines provider status sets, metadata keys and system-wide defaults.
"""

from typing import Final

# Subscription statuses that grant access
ACTIVE_SUBSCRIPTION_STATUSES: Final[tuple] = ("active", "trialing")
CANCELED_STATUS: Final[str] = "canceled"

# Payment statuses mirrored into the payments table
PAYMENT_STATUS_SUCCEEDED: Final[str] = "succeeded"
PAYMENT_STATUS_FAILED: Final[str] = "failed"

# Metadata key carrying the local user id on provider objects
USER_ID_METADATA_KEY: Final[str] = "user_id"
LEGACY_USER_ID_METADATA_KEYS: Final[tuple] = ("userId",)

# Webhook event processing statuses
WEBHOOK_STATUS_PROCESSING: Final[str] = "processing"
WEBHOOK_STATUS_PROCESSED: Final[str] = "processed"
WEBHOOK_STATUS_FAILED: Final[str] = "failed"
WEBHOOK_STATUS_IGNORED: Final[str] = "ignored"

# Checkout
DEFAULT_CURRENCY: Final[str] = "usd"
CHECKOUT_PAYMENT_METHOD_TYPES: Final[tuple] = ("card",)
DEFAULT_PAYMENT_DESCRIPTION: Final[str] = "Subscription payment"

# Payment history
DEFAULT_PAYMENTS_LIMIT: Final[int] = 20
MAX_PAYMENTS_LIMIT: Final[int] = 100

# Auth
ACCESS_TOKEN_EXPIRE_HOURS: Final[int] = 24 * 7  # 7 days
ACCESS_TOKEN_COOKIE: Final[str] = "access_token"

# Storage
DATA_DIR: Final[str] = "data"
DEFAULT_DATABASE_FILE: Final[str] = "billing.db"

# Plan features shown on the pricing page
PLAN_FEATURES: Final[tuple] = (
    "Unlimited app creation",
    "AI-powered code generation",
    "Priority support",
    "Custom domain support",
)
