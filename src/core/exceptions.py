"""
Custom exception hierarchy for the billing service.

Provides a consistent error handling approach across all modules.
"""


class BillingError(Exception):
    """
    Base exception for all billing service errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: dict | None = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ==================== Configuration Errors ====================

class ConfigurationError(BillingError):
    """
    Error in system configuration.

    Raised when required configuration is missing or invalid.
    """
    pass


# ==================== Provider Errors ====================

class PaymentProviderError(BillingError):
    """
    Raised when a call to the payment provider fails.

    Wraps SDK errors so the API layer never leaks provider internals.
    """

    @classmethod
    def from_stripe(cls, operation: str, exc: Exception) -> "PaymentProviderError":
        """Build from a stripe.StripeError raised during `operation`."""
        return cls(
            f"Payment provider call failed: {operation}",
            {
                "operation": operation,
                "provider_message": getattr(exc, "user_message", None) or str(exc),
                "provider_code": getattr(exc, "code", None),
                "http_status": getattr(exc, "http_status", None),
            },
        )


# ==================== Lookup Errors ====================

class SubscriptionNotFoundError(BillingError):
    """Raised when a user has no matching subscription."""

    def __init__(self, user_id: str):
        super().__init__(f"No active subscription found for user {user_id}", {'user_id': user_id})
        self.user_id = user_id


class CustomerNotFoundError(BillingError):
    """Raised when a user has no provider customer yet."""

    def __init__(self, user_id: str):
        super().__init__(f"No billing customer for user {user_id}", {'user_id': user_id})
        self.user_id = user_id


# ==================== Webhook Errors ====================

class WebhookError(BillingError):
    """
    Base error for webhook processing.
    """
    pass


class WebhookSignatureError(WebhookError):
    """Raised when the webhook signature or payload cannot be verified."""
    pass


class WebhookPayloadError(WebhookError):
    """Raised when a verified event lacks data needed to reconcile it."""
    pass


# ==================== Usage Errors ====================

class UsageReportingError(BillingError):
    """Raised when metered usage cannot be reported to the provider."""
    pass
