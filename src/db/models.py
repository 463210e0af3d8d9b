"""Database models for the billing service."""

from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, Integer, Float, Boolean, Text, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from db.database import Base
from config.constants import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    DEFAULT_CURRENCY,
    WEBHOOK_STATUS_PROCESSING,
)
import uuid


def utcnow() -> datetime:
    """Naive UTC now, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_timestamp(value: int | None) -> datetime | None:
    """Convert a provider unix timestamp to a naive UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class User(Base):
    """User model for authentication and billing customer tracking."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Stripe integration
    stripe_customer_id = Column(String, nullable=True, index=True)

    subscriptions = relationship(
        "Subscription", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    def to_dict(self) -> dict:
        """Convert user to dictionary (without sensitive data)."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": _isoformat(self.created_at),
        }


class Subscription(Base):
    """Local mirror of a provider subscription."""
    __tablename__ = "subscriptions"

    # Provider subscription id (sub_...)
    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stripe_customer_id = Column(String, nullable=False)
    stripe_price_id = Column(String, nullable=False)
    stripe_product_id = Column(String, nullable=False)
    status = Column(String, nullable=False)
    cancel_at_period_end = Column(Boolean, default=False)
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)
    canceled_at = Column(DateTime, nullable=True)
    trial_start = Column(DateTime, nullable=True)
    trial_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="subscriptions")

    __table_args__ = (
        Index("subscriptions_user_id_idx", "user_id"),
        Index("subscriptions_stripe_customer_id_idx", "stripe_customer_id"),
        Index("subscriptions_status_idx", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_SUBSCRIPTION_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "priceId": self.stripe_price_id,
            "productId": self.stripe_product_id,
            "currentPeriodStart": _isoformat(self.current_period_start),
            "currentPeriodEnd": _isoformat(self.current_period_end),
            "cancelAtPeriodEnd": bool(self.cancel_at_period_end),
            "canceledAt": _isoformat(self.canceled_at),
            "trialEnd": _isoformat(self.trial_end),
        }


class Payment(Base):
    """Local mirror of a paid (or failed) invoice."""
    __tablename__ = "payments"

    # Provider payment intent id, or pi_<invoice id> when the invoice has none
    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    subscription_id = Column(String, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True)
    stripe_invoice_id = Column(String, nullable=True)
    stripe_customer_id = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String, default=DEFAULT_CURRENCY, nullable=False)
    status = Column(String, nullable=False)
    description = Column(String, nullable=True)
    receipt_url = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    paid_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("payments_user_id_idx", "user_id"),
        Index("payments_subscription_id_idx", "subscription_id"),
        Index("payments_status_idx", "status"),
    )


class UsageRecord(Base):
    """Metered usage aggregated per user per billing month."""
    __tablename__ = "usage_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tokens_in = Column(Integer, default=0)
    tokens_out = Column(Integer, default=0)
    total_requests = Column(Integer, default=0)
    total_cost = Column(Float, default=0.0)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    reported = Column(Boolean, default=False)
    stripe_usage_record_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("usage_records_user_id_idx", "user_id"),
        Index("usage_records_period_idx", "period_start", "period_end"),
        # One record per user per period
        UniqueConstraint("user_id", "period_start", name="uq_usage_record_period"),
    )

    @property
    def total_tokens(self) -> int:
        return (self.tokens_in or 0) + (self.tokens_out or 0)


class WebhookEvent(Base):
    """Provider webhook event log used to acknowledge replays without reprocessing."""
    __tablename__ = "webhook_events"

    # Provider event id (evt_...)
    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=WEBHOOK_STATUS_PROCESSING, index=True)
    error_message = Column(Text, nullable=True)
    received_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
