"""
Metered usage tracking and reporting.

Usage is aggregated per user per calendar month (UTC) in usage_records and
reported to Stripe as billing meter events once the month is over.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

import stripe
from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.settings import get_settings
from core.exceptions import PaymentProviderError, UsageReportingError
from db.models import UsageRecord, User, utcnow


def month_bounds(at: datetime) -> tuple:
    """Return (start, end) of the calendar month containing `at`; end is exclusive."""
    if at.tzinfo is not None:
        at = at.astimezone(timezone.utc).replace(tzinfo=None)
    start = datetime(at.year, at.month, 1)
    if at.month == 12:
        end = datetime(at.year + 1, 1, 1)
    else:
        end = datetime(at.year, at.month + 1, 1)
    return start, end


class UsageService:
    """Record usage locally and report it to Stripe billing meters."""

    def __init__(self, db: Session, api_key: Optional[str] = None):
        self.db = db
        stripe.api_key = api_key or get_settings().stripe_secret_key

    def record_usage(
        self,
        user_id: str,
        tokens_in: int = 0,
        tokens_out: int = 0,
        cost: float = 0.0,
        requests: int = 1,
        at: Optional[datetime] = None
    ) -> UsageRecord:
        """
        Add usage to the user's record for the month containing `at`.

        Args:
            user_id: User the usage belongs to
            tokens_in: Prompt tokens consumed
            tokens_out: Completion tokens produced
            cost: Internal cost of the usage in USD
            requests: Number of requests to add
            at: When the usage happened (default: now, UTC)

        Returns:
            The updated usage record

        Raises:
            ValueError: Any amount is negative
        """
        if min(tokens_in, tokens_out, cost, requests) < 0:
            raise ValueError("Usage amounts cannot be negative")

        period_start, period_end = month_bounds(at or utcnow())
        record = self._get_or_create(user_id, period_start, period_end)
        if record.reported:
            logger.warning(
                f"Usage for user {user_id} added to already reported period {period_start:%Y-%m}"
            )

        record.tokens_in = (record.tokens_in or 0) + tokens_in
        record.tokens_out = (record.tokens_out or 0) + tokens_out
        record.total_cost = (record.total_cost or 0.0) + cost
        record.total_requests = (record.total_requests or 0) + requests
        self.db.commit()
        return record

    def _get_or_create(self, user_id: str, period_start: datetime, period_end: datetime) -> UsageRecord:
        record = self._find(user_id, period_start)
        if record is not None:
            return record

        record = UsageRecord(
            user_id=user_id,
            period_start=period_start,
            period_end=period_end,
            tokens_in=0,
            tokens_out=0,
            total_requests=0,
            total_cost=0.0,
        )
        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError:
            # Another request created the period record first
            self.db.rollback()
            return self._find(user_id, period_start)
        return record

    def _find(self, user_id: str, period_start: datetime) -> Optional[UsageRecord]:
        return (
            self.db.query(UsageRecord)
            .filter(UsageRecord.user_id == user_id, UsageRecord.period_start == period_start)
            .first()
        )

    def get_current_usage(self, user_id: str) -> Optional[UsageRecord]:
        period_start, _ = month_bounds(utcnow())
        return self._find(user_id, period_start)

    def report_unreported_usage(self, meter_event_name: str) -> Dict[str, int]:
        """
        Send one meter event per closed, unreported usage record.

        Records with no tokens are closed as reported without an event. Records
        whose user has no Stripe customer are skipped and stay pending. A
        provider error on one record is logged and counted; the record stays
        unreported for the next run.

        Returns:
            Counts: {"reported": n, "skipped": m, "failed": k}

        Raises:
            UsageReportingError: No meter event name configured
        """
        if not meter_event_name:
            raise UsageReportingError("A billing meter event name is required")

        counts = {"reported": 0, "skipped": 0, "failed": 0}
        now = utcnow()

        pending = (
            self.db.query(UsageRecord, User)
            .join(User, User.id == UsageRecord.user_id)
            .filter(UsageRecord.reported.is_(False), UsageRecord.period_end <= now)
            .order_by(UsageRecord.period_start)
            .all()
        )

        for record, user in pending:
            if record.total_tokens == 0:
                # Nothing to bill; close the period without a meter event
                record.reported = True
                self.db.commit()
                counts["skipped"] += 1
                continue
            if not user.stripe_customer_id:
                counts["skipped"] += 1
                continue

            try:
                meter_event = self._send_meter_event(meter_event_name, record, user.stripe_customer_id)
            except PaymentProviderError as e:
                logger.error(f"Failed to report usage record {record.id} for user {user.id}: {e}")
                counts["failed"] += 1
                continue

            record.reported = True
            record.stripe_usage_record_id = meter_event.identifier
            self.db.commit()
            counts["reported"] += 1
            logger.info(
                f"Reported {record.total_tokens} tokens for user {user.id} "
                f"({record.period_start:%Y-%m}) as meter event {meter_event.identifier}"
            )

        return counts

    def _send_meter_event(self, meter_event_name: str, record: UsageRecord, customer_id: str):
        # Last second of the period
        timestamp = int(record.period_end.replace(tzinfo=timezone.utc).timestamp()) - 1
        try:
            return stripe.billing.MeterEvent.create(
                event_name=meter_event_name,
                identifier=record.id,
                timestamp=timestamp,
                payload={
                    "stripe_customer_id": customer_id,
                    "value": str(record.total_tokens),
                },
            )
        except stripe.StripeError as e:
            raise PaymentProviderError.from_stripe("create meter event", e) from e
