"""
Pydantic schemas for API request/response validation.

Field names are snake_case in Python and camelCase on the wire.
"""

from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Checkout & Portal Schemas
# ============================================================================

class CheckoutSessionRequest(CamelModel):
    """Request to start a subscription checkout."""
    price_id: str = Field(..., min_length=1)
    success_url: Optional[HttpUrl] = None
    cancel_url: Optional[HttpUrl] = None


class CheckoutSessionResponse(CamelModel):
    session_id: str
    url: str


class PortalSessionResponse(CamelModel):
    url: str


# ============================================================================
# Subscription Schemas
# ============================================================================

class SubscriptionSummary(CamelModel):
    id: str
    status: str
    current_period_end: datetime
    cancel_at_period_end: bool


class SubscriptionStatusResponse(CamelModel):
    has_active_subscription: bool
    subscription: Optional[SubscriptionSummary] = None


class MessageResponse(CamelModel):
    message: str


# ============================================================================
# Catalog Schemas
# ============================================================================

class PriceInfo(CamelModel):
    id: str
    product: Optional[str] = None
    product_name: Optional[str] = None
    unit_amount: Optional[int] = None
    currency: str
    interval: Optional[str] = None
    interval_count: Optional[int] = None


class PricesResponse(CamelModel):
    prices: List[PriceInfo] = Field(default_factory=list)


# ============================================================================
# History & Usage Schemas
# ============================================================================

class PaymentInfo(CamelModel):
    id: str
    subscription_id: Optional[str] = None
    invoice_id: Optional[str] = None
    amount: int
    currency: str
    status: str
    description: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class PaymentsResponse(CamelModel):
    payments: List[PaymentInfo] = Field(default_factory=list)


class UsageResponse(CamelModel):
    tokens_in: int = 0
    tokens_out: int = 0
    total_requests: int = 0
    total_cost: float = 0.0
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    reported: bool = False
