"""
Tests for metered usage tracking and reporting.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from billing.usage import UsageService, month_bounds
from core.exceptions import UsageReportingError
from db.models import UsageRecord


@pytest.fixture
def usage(db):
    return UsageService(db)


def test_month_bounds():
    assert month_bounds(datetime(2024, 3, 15, 12)) == (datetime(2024, 3, 1), datetime(2024, 4, 1))
    assert month_bounds(datetime(2024, 12, 31)) == (datetime(2024, 12, 1), datetime(2025, 1, 1))


def test_month_bounds_converts_aware_datetimes_to_utc():
    at = datetime(2024, 3, 1, 0, 30, tzinfo=timezone(timedelta(hours=2)))
    assert month_bounds(at) == (datetime(2024, 2, 1), datetime(2024, 3, 1))


def test_aware_usage_lands_in_utc_month(usage, user):
    """00:30 on March 1st at UTC+2 is still February in UTC."""
    at = datetime(2024, 3, 1, 0, 30, tzinfo=timezone(timedelta(hours=2)))
    record = usage.record_usage(user.id, tokens_in=3, at=at)

    assert record.period_start == datetime(2024, 2, 1)
    assert record.period_end == datetime(2024, 3, 1)


def test_usage_accumulates_within_month(usage, user, db):
    usage.record_usage(user.id, tokens_in=100, tokens_out=50, cost=0.01, at=datetime(2024, 3, 2))
    record = usage.record_usage(user.id, tokens_in=10, tokens_out=5, cost=0.002, at=datetime(2024, 3, 20))

    assert db.query(UsageRecord).count() == 1
    assert record.tokens_in == 110
    assert record.tokens_out == 55
    assert record.total_tokens == 165
    assert record.total_requests == 2
    assert record.total_cost == pytest.approx(0.012)


def test_new_month_new_record(usage, user, db):
    usage.record_usage(user.id, tokens_in=1, at=datetime(2024, 3, 31, 23, 59))
    usage.record_usage(user.id, tokens_in=1, at=datetime(2024, 4, 1))
    assert db.query(UsageRecord).count() == 2


def test_negative_usage_rejected(usage, user):
    with pytest.raises(ValueError):
        usage.record_usage(user.id, tokens_in=-1)


def test_current_usage(usage, user):
    assert usage.get_current_usage(user.id) is None
    usage.record_usage(user.id, tokens_in=7)
    assert usage.get_current_usage(user.id).tokens_in == 7


def test_report_closed_periods(usage, make_user, db):
    user = make_user(customer_id="cus_123")
    record = usage.record_usage(user.id, tokens_in=1000, tokens_out=500, at=datetime(2024, 1, 10))
    usage.record_usage(user.id, tokens_in=5)  # current month stays open

    with patch.object(stripe.billing.MeterEvent, "create",
                      return_value=SimpleNamespace(identifier=record.id)) as create:
        counts = usage.report_unreported_usage("api_tokens")

    assert counts == {"reported": 1, "skipped": 0, "failed": 0}
    kwargs = create.call_args.kwargs
    assert kwargs["event_name"] == "api_tokens"
    assert kwargs["identifier"] == record.id
    assert kwargs["payload"] == {"stripe_customer_id": "cus_123", "value": "1500"}
    # last second of January 2024, UTC
    assert kwargs["timestamp"] == 1706745599

    db.refresh(record)
    assert record.reported
    assert record.stripe_usage_record_id == record.id


def test_report_skips_users_without_customer(usage, user):
    usage.record_usage(user.id, tokens_in=10, at=datetime(2024, 1, 10))

    with patch.object(stripe.billing.MeterEvent, "create") as create:
        counts = usage.report_unreported_usage("api_tokens")

    create.assert_not_called()
    assert counts["skipped"] == 1


def test_report_failure_leaves_record_pending(usage, make_user, db):
    user = make_user(customer_id="cus_123")
    record = usage.record_usage(user.id, tokens_in=10, at=datetime(2024, 1, 10))

    with patch.object(stripe.billing.MeterEvent, "create", side_effect=stripe.APIConnectionError("down")):
        counts = usage.report_unreported_usage("api_tokens")

    assert counts == {"reported": 0, "skipped": 0, "failed": 1}
    db.refresh(record)
    assert not record.reported


def test_reported_records_not_sent_twice(usage, make_user):
    user = make_user(customer_id="cus_123")
    record = usage.record_usage(user.id, tokens_in=10, at=datetime(2024, 1, 10))

    with patch.object(stripe.billing.MeterEvent, "create",
                      return_value=SimpleNamespace(identifier=record.id)) as create:
        usage.report_unreported_usage("api_tokens")
        counts = usage.report_unreported_usage("api_tokens")

    assert create.call_count == 1
    assert counts == {"reported": 0, "skipped": 0, "failed": 0}


def test_report_requires_event_name(usage):
    with pytest.raises(UsageReportingError):
        usage.report_unreported_usage("")


def test_empty_periods_closed_without_meter_event(usage, make_user, db):
    user = make_user(customer_id="cus_123")
    record = usage.record_usage(user.id, tokens_in=0, tokens_out=0, at=datetime(2024, 1, 10))

    with patch.object(stripe.billing.MeterEvent, "create") as create:
        first = usage.report_unreported_usage("api_tokens")
        second = usage.report_unreported_usage("api_tokens")

    create.assert_not_called()
    assert first == {"reported": 0, "skipped": 1, "failed": 0}
    assert second == {"reported": 0, "skipped": 0, "failed": 0}
    db.refresh(record)
    assert record.reported
    assert record.stripe_usage_record_id is None
