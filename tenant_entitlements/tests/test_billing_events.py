"""
Tests for BillingChangeEvent parsing.
"""

from datetime import datetime, timezone

import pytest

from tenant_entitlements.entitlements.errors import InvalidBillingEventError
from tenant_entitlements.entitlements.models import SubscriptionStatus, Tier
from tenant_entitlements.services.billing_events import BillingChangeEvent
from tenant_entitlements.tests.conftest import FIXED_NOW


@pytest.fixture
def provider_subscription():
    """Provider subscription object as delivered by a subscription.updated webhook."""
    return {
        "id": "sub_123",
        "customer": "cus_456",
        "status": "active",
        "current_period_start": 1772366400,
        "current_period_end": 1775044800,
        "trial_end": None,
        "items": {"data": [{"price": {"id": "price_pro_plus"}}]},
    }


class TestFromPayload:
    """Tests for payload validation."""

    def test_snake_case_payload(self):
        event = BillingChangeEvent.from_payload({
            "tenant_id": "ws_1",
            "tier": "pro",
            "status": "active",
            "event_id": "evt_1",
            "period_end": "2026-04-01T00:00:00+00:00",
        })
        assert event.tenant_id == "ws_1"
        assert event.tier is Tier.PRO
        assert event.period_end == datetime(2026, 4, 1, tzinfo=timezone.utc)

    def test_unknown_status_maps_to_unpaid(self):
        event = BillingChangeEvent.from_payload({
            "tenantId": "ws_1", "tier": "pro", "status": "on_hold", "eventId": "evt_1",
        })
        assert event.status is SubscriptionStatus.UNPAID

    @pytest.mark.parametrize("payload", [
        {"tier": "pro", "status": "active", "eventId": "evt_1"},
        {"tenantId": "", "tier": "pro", "status": "active", "eventId": "evt_1"},
        {"tenantId": "ws_1", "tier": "pro", "status": "active"},
        {"tenantId": "ws_1", "tier": "gold", "status": "active", "eventId": "evt_1"},
        {"tenantId": "ws_1", "tier": 3, "status": "active", "eventId": "evt_1"},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(InvalidBillingEventError):
            BillingChangeEvent.from_payload(payload)

    def test_error_carries_event_id(self):
        with pytest.raises(InvalidBillingEventError) as exc_info:
            BillingChangeEvent.from_payload({"tenantId": "ws_1", "tier": "gold", "status": "active", "eventId": "evt_9"})
        assert exc_info.value.event_id == "evt_9"

    def test_non_mapping_payload(self):
        with pytest.raises(InvalidBillingEventError):
            BillingChangeEvent.from_payload(["not", "a", "dict"])


class TestFromProviderSubscription:
    """Tests for provider subscription objects."""

    def test_maps_price_and_periods(self, policy, provider_subscription):
        event = BillingChangeEvent.from_provider_subscription(
            "ws_1", provider_subscription, "evt_1", policy, occurred_at=1772366400,
        )

        assert event.tier is Tier.PRO_PLUS
        assert event.status is SubscriptionStatus.ACTIVE
        assert event.provider_customer_id == "cus_456"
        assert event.provider_subscription_id == "sub_123"
        assert event.period_start == datetime.fromtimestamp(1772366400, tz=timezone.utc)
        assert event.occurred_at == datetime.fromtimestamp(1772366400, tz=timezone.utc)

    def test_trialing_subscription(self, policy, provider_subscription):
        provider_subscription.update({"status": "trialing", "trial_end": 1775044800})

        event = BillingChangeEvent.from_provider_subscription("ws_1", provider_subscription, "evt_1", policy)

        assert event.status is SubscriptionStatus.TRIAL
        assert event.trial_end == datetime.fromtimestamp(1775044800, tz=timezone.utc)

    @pytest.mark.security
    def test_unmapped_price_is_free(self, policy, provider_subscription):
        provider_subscription["items"] = {"data": [{"price": {"id": "price_unknown"}}]}
        event = BillingChangeEvent.from_provider_subscription("ws_1", provider_subscription, "evt_1", policy)
        assert event.tier is Tier.FREE

    def test_no_items_is_free(self, policy, provider_subscription):
        provider_subscription["items"] = {"data": []}
        event = BillingChangeEvent.from_provider_subscription("ws_1", provider_subscription, "evt_1", policy)
        assert event.tier is Tier.FREE


class TestCancellation:
    """Subscription deletion."""

    def test_cancellation_is_free_cancelled(self):
        event = BillingChangeEvent.cancellation("ws_1", "evt_del", provider_customer_id="cus_456")
        assert event.tier is Tier.FREE
        assert event.status is SubscriptionStatus.CANCELLED
        assert event.provider_customer_id == "cus_456"

    def test_missing_event_id(self):
        with pytest.raises(InvalidBillingEventError):
            BillingChangeEvent.cancellation("ws_1", "")


class TestToBillingState:
    """Conversion to BillingState."""

    def test_occurred_at_orders_the_event(self):
        event = BillingChangeEvent.from_payload({
            "tenantId": "ws_1", "tier": "pro", "status": "active", "eventId": "evt_1",
            "occurredAt": FIXED_NOW.isoformat(),
        })
        state = event.to_billing_state()
        assert state.synced_at == FIXED_NOW
        assert state.last_sync_event_id == "evt_1"

    def test_receive_time_used_without_occurred_at(self):
        event = BillingChangeEvent.from_payload({
            "tenantId": "ws_1", "tier": "pro", "status": "active", "eventId": "evt_1",
        })
        assert event.to_billing_state(received_at=FIXED_NOW).synced_at == FIXED_NOW

    def test_event_is_immutable(self):
        event = BillingChangeEvent.cancellation("ws_1", "evt_del")
        with pytest.raises(Exception):
            event.tier = Tier.ENTERPRISE
