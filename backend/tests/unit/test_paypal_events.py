"""
Unit tests for PayPal webhook envelope parsing.
"""

from datetime import datetime, timezone

import pytest

from adapters.payments.paypal_events import (
    SubscriptionActivated,
    SubscriptionStatusChanged,
    UnhandledEvent,
    normalize_event_type,
    parse_webhook_event,
)
from core.domain.subscription import SubscriptionStatus
from core.errors import MalformedEventError

RECEIVED = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)


class TestEventTypes:
    @pytest.mark.parametrize(
        "raw",
        ["BILLING.SUBSCRIPTION.ACTIVATED", "SUBSCRIPTION.ACTIVATED", "billing.subscription.activated"],
    )
    def test_prefix_and_case_are_normalized(self, raw):
        assert normalize_event_type(raw) == "SUBSCRIPTION.ACTIVATED"

    @pytest.mark.parametrize(
        "event_type,status",
        [
            ("BILLING.SUBSCRIPTION.CANCELLED", SubscriptionStatus.CANCELLED),
            ("BILLING.SUBSCRIPTION.EXPIRED", SubscriptionStatus.EXPIRED),
            ("BILLING.SUBSCRIPTION.PAYMENT.FAILED", SubscriptionStatus.PAST_DUE),
            ("SUBSCRIPTION.PAYMENT.COMPLETED", SubscriptionStatus.ACTIVE),
        ],
    )
    def test_status_events(self, make_webhook, event_type, status):
        event = parse_webhook_event(make_webhook(event_type), received_at=RECEIVED)
        assert isinstance(event, SubscriptionStatusChanged)
        assert event.status == status
        assert event.external_subscription_id == "I-SUB0001"

    def test_activation(self, make_webhook):
        payload = make_webhook("BILLING.SUBSCRIPTION.ACTIVATED")
        payload["resource"]["billing_info"] = {"last_payment": {"payment_id": "PAY-1"}}

        event = parse_webhook_event(payload, received_at=RECEIVED)

        assert isinstance(event, SubscriptionActivated)
        assert event.user_id == "user-1"
        assert event.external_plan_id == "plan_pro"
        assert event.last_payment_id == "PAY-1"
        assert event.status == SubscriptionStatus.ACTIVE

    def test_unknown_event_is_unhandled(self, make_webhook):
        event = parse_webhook_event(make_webhook("PAYMENT.SALE.REFUNDED"))
        assert isinstance(event, UnhandledEvent)
        assert event.event_type == "PAYMENT.SALE.REFUNDED"

    def test_unknown_event_does_not_need_resource(self):
        event = parse_webhook_event({"event_type": "CUSTOMER.DISPUTE.CREATED"})
        assert isinstance(event, UnhandledEvent)

    def test_event_type_alias(self):
        event = parse_webhook_event(
            {"eventType": "BILLING.SUBSCRIPTION.EXPIRED", "resource": {"id": "I-2"}}
        )
        assert isinstance(event, SubscriptionStatusChanged)
        assert event.status == SubscriptionStatus.EXPIRED


class TestEventTime:
    def test_create_time_is_the_event_time(self, make_webhook, event_time):
        payload = make_webhook("BILLING.SUBSCRIPTION.CANCELLED", create_time=event_time(5))
        event = parse_webhook_event(payload, received_at=RECEIVED)
        assert event.event_at == event_time(5)

    def test_missing_create_time_uses_receipt_time(self, make_webhook):
        event = parse_webhook_event(make_webhook("BILLING.SUBSCRIPTION.CANCELLED"), received_at=RECEIVED)
        assert event.event_at == RECEIVED

    def test_unparseable_create_time_uses_receipt_time(self, make_webhook):
        payload = make_webhook("BILLING.SUBSCRIPTION.CANCELLED")
        payload["create_time"] = "yesterday-ish"
        event = parse_webhook_event(payload, received_at=RECEIVED)
        assert event.event_at == RECEIVED


class TestMalformed:
    def test_missing_event_type(self):
        with pytest.raises(MalformedEventError, match="event_type"):
            parse_webhook_event({"resource": {"id": "I-1"}})

    def test_missing_resource_id(self):
        with pytest.raises(MalformedEventError, match="resource.id"):
            parse_webhook_event({"event_type": "BILLING.SUBSCRIPTION.CANCELLED", "resource": {}})

    def test_non_object_body(self):
        with pytest.raises(MalformedEventError):
            parse_webhook_event(["BILLING.SUBSCRIPTION.ACTIVATED"])

    def test_activation_without_custom_id_still_parses(self, make_webhook):
        # Attribution is enforced by the ingestion service, not the parser
        event = parse_webhook_event(make_webhook("BILLING.SUBSCRIPTION.ACTIVATED", custom_id=None))
        assert isinstance(event, SubscriptionActivated)
        assert event.user_id is None
