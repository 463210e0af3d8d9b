"""Database module for the billing service."""

from db.database import Base, SessionLocal, configure_engine, get_engine, get_db, init_db
from db.models import User, Subscription, Payment, UsageRecord, WebhookEvent

__all__ = [
    "Base",
    "SessionLocal",
    "configure_engine",
    "get_engine",
    "get_db",
    "init_db",
    "User",
    "Subscription",
    "Payment",
    "UsageRecord",
    "WebhookEvent",
]
