"""Stripe webhook event dispatcher."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError

from billing.stripe_service import StripeService, field
from config.constants import (
    PAYMENT_STATUS_FAILED,
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_IGNORED,
    WEBHOOK_STATUS_PROCESSED,
    WEBHOOK_STATUS_PROCESSING,
)
from db.models import User, WebhookEvent, from_timestamp, utcnow
from utils.email import EmailService


@dataclass
class WebhookResult:
    """Outcome of dispatching one event; always acknowledged with HTTP 200."""
    event_id: str
    event_type: str
    handled: bool = False
    duplicate: bool = False
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": True}
        if self.duplicate:
            body["duplicate"] = True
        if self.error:
            body["error"] = self.error
        return body


class WebhookDispatcher:
    """
    Route verified Stripe events to StripeService handlers.

    Each event id is recorded in webhook_events; replays of an event that
    was already processed (or ignored) are acknowledged without re-running.
    Failed events are re-run when Stripe redelivers them.
    """

    def __init__(self, service: StripeService, email_service: Optional[EmailService] = None):
        self.service = service
        self.db = service.db
        self._email_service = email_service
        self.handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.created": self._subscription_created,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._payment_succeeded,
            "invoice.payment_failed": self._payment_failed,
            "customer.subscription.trial_will_end": self._trial_will_end,
        }

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = EmailService()
        return self._email_service

    async def dispatch(self, event: Dict[str, Any]) -> WebhookResult:
        event_id = event.get("id")
        event_type = event.get("type")
        result = WebhookResult(event_id=event_id, event_type=event_type)

        record = self._claim(event_id, event_type)
        if record is None:
            logger.info(f"Duplicate webhook event {event_id} ({event_type}), skipping")
            result.duplicate = True
            return result

        handler = self.handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled webhook event type: {event_type}")
            self._finish(record, WEBHOOK_STATUS_IGNORED)
            return result

        logger.info(f"Processing Stripe webhook event {event_id} ({event_type})")
        try:
            await handler(event["data"]["object"])
        except Exception as e:
            # Stripe only needs an acknowledgement; the failure is kept on the event row
            self.db.rollback()
            logger.exception(f"Error processing webhook event {event_id} ({event_type}): {e}")
            record = self.db.get(WebhookEvent, event_id)
            if record is not None:
                record.error_message = str(e)
                self._finish(record, WEBHOOK_STATUS_FAILED)
            result.error = "Processing failed"
            return result

        self._finish(record, WEBHOOK_STATUS_PROCESSED)
        result.handled = True
        return result

    def _claim(self, event_id: str, event_type: str) -> Optional[WebhookEvent]:
        """Record the event, or return None when it was already handled."""
        record = self.db.get(WebhookEvent, event_id)
        if record is not None:
            if record.status in (WEBHOOK_STATUS_PROCESSED, WEBHOOK_STATUS_IGNORED):
                return None
            record.status = WEBHOOK_STATUS_PROCESSING
            record.error_message = None
            self.db.commit()
            return record

        record = WebhookEvent(id=event_id, event_type=event_type, status=WEBHOOK_STATUS_PROCESSING)
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            self.db.rollback()
            return None
        return record

    def _finish(self, record: WebhookEvent, status: str) -> None:
        record.status = status
        record.processed_at = utcnow()
        self.db.commit()

    # ==================== Handlers ====================

    async def _checkout_completed(self, session: Any) -> None:
        user_id = self.service.handle_checkout_completed(session)
        logger.info(f"Checkout completed for user {user_id} (session {field(session, 'id')})")

    async def _subscription_created(self, subscription: Any) -> None:
        self.service.handle_subscription_created(subscription)
        logger.info(f"Subscription created: {field(subscription, 'id')}")

    async def _subscription_updated(self, subscription: Any) -> None:
        self.service.handle_subscription_updated(subscription)
        logger.info(f"Subscription updated: {field(subscription, 'id')}")

    async def _subscription_deleted(self, subscription: Any) -> None:
        self.service.handle_subscription_deleted(subscription)
        logger.info(f"Subscription deleted: {field(subscription, 'id')}")

    async def _payment_succeeded(self, invoice: Any) -> None:
        payment = self.service.handle_invoice_payment_succeeded(invoice)
        if payment is not None:
            logger.info(f"Invoice payment succeeded: {field(invoice, 'id')} ({payment.amount} {payment.currency})")

    async def _payment_failed(self, invoice: Any) -> None:
        logger.warning(f"Invoice payment failed: {field(invoice, 'id')}")
        payment = self.service.handle_invoice_payment_failed(invoice)
        if payment is None or payment.status != PAYMENT_STATUS_FAILED:
            return

        user = self.db.get(User, payment.user_id)
        if user is not None:
            await self.email_service.send_payment_failed(
                to_email=user.email,
                amount=payment.amount,
                currency=payment.currency,
                invoice_url=payment.receipt_url,
                user_name=user.name,
            )

    async def _trial_will_end(self, subscription: Any) -> None:
        subscription_id = field(subscription, "id")
        logger.info(f"Trial will end soon for subscription {subscription_id}")

        row = self.service.upsert_subscription(subscription)
        self.db.commit()
        user = self.db.get(User, row.user_id)
        if user is not None:
            await self.email_service.send_trial_ending(
                to_email=user.email,
                trial_end=from_timestamp(field(subscription, "trial_end")),
                user_name=user.name,
            )
