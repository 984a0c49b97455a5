"""
Billing change events - inbound payloads from the payment-provider webhook.

The webhook collaborator verifies signatures, resolves the tenant and hands
a BillingChangeEvent to BillingSyncHandler.apply_event().

Accepted forms:
- The billing-change payload, camelCase or snake_case keys
- A provider subscription object (subscription updated / created)
- A subscription deletion, which downgrades to free/cancelled
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tenant_entitlements.entitlements.errors import InvalidBillingEventError
from tenant_entitlements.entitlements.models import (
    BillingState,
    SubscriptionStatus,
    Tier,
    utc_now,
)
from tenant_entitlements.entitlements.policy import TierPolicyTable

logger = logging.getLogger(__name__)


def _from_epoch(value: Any) -> Optional[datetime]:
    """Provider timestamps are unix seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class BillingChangeEvent(BaseModel):
    """Validated billing-change event for one tenant."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    tenant_id: str = Field(..., min_length=1, alias="tenantId")
    tier: Tier
    status: SubscriptionStatus
    period_start: Optional[datetime] = Field(None, alias="periodStart")
    period_end: Optional[datetime] = Field(None, alias="periodEnd")
    trial_end: Optional[datetime] = Field(None, alias="trialEnd")
    event_id: str = Field(..., min_length=1, alias="eventId")
    occurred_at: Optional[datetime] = Field(None, alias="occurredAt")
    provider_customer_id: Optional[str] = Field(None, alias="providerCustomerId")
    provider_subscription_id: Optional[str] = Field(None, alias="providerSubscriptionId")

    @field_validator("tier", mode="before")
    @classmethod
    def parse_tier(cls, v: Any) -> Tier:
        if not isinstance(v, (str, Tier)):
            raise ValueError(f"tier must be a string, got {type(v).__name__}")
        return Tier.parse(v)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> SubscriptionStatus:
        if isinstance(v, SubscriptionStatus):
            return v
        if not isinstance(v, str):
            raise ValueError(f"status must be a string, got {type(v).__name__}")
        return SubscriptionStatus.from_provider_status(v)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BillingChangeEvent":
        """
        Validate a billing-change payload.

        Raises InvalidBillingEventError if tenantId or eventId is missing or
        the tier is unknown.
        """
        if not isinstance(payload, dict):
            raise InvalidBillingEventError("payload must be an object")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            event_id = payload.get("eventId") or payload.get("event_id")
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise InvalidBillingEventError(f"invalid fields: {fields}", event_id=event_id) from e

    @classmethod
    def from_provider_subscription(
        cls,
        tenant_id: str,
        subscription: Dict[str, Any],
        event_id: str,
        policy: TierPolicyTable,
        occurred_at: Any = None,
    ) -> "BillingChangeEvent":
        """
        Build an event from a provider subscription object.

        The tier comes from the first subscription item's price id; an
        unmapped price id resolves to free.
        """
        items = (subscription.get("items") or {}).get("data") or []
        price_id = ""
        if items:
            price_id = ((items[0] or {}).get("price") or {}).get("id") or ""

        tier = policy.tier_for_price(price_id)
        if tier is None:
            logger.warning(
                "Unmapped provider price id, treating subscription as free",
                extra={"tenant_id": tenant_id, "price_id": price_id, "event_id": event_id},
            )
            tier = Tier.FREE

        try:
            return cls(
                tenant_id=tenant_id,
                tier=tier,
                status=subscription.get("status") or "",
                period_start=_from_epoch(subscription.get("current_period_start")),
                period_end=_from_epoch(subscription.get("current_period_end")),
                trial_end=_from_epoch(subscription.get("trial_end")),
                event_id=event_id,
                occurred_at=_from_epoch(occurred_at),
                provider_customer_id=subscription.get("customer"),
                provider_subscription_id=subscription.get("id"),
            )
        except (ValidationError, ValueError, TypeError) as e:
            raise InvalidBillingEventError(str(e), event_id=event_id) from e

    @classmethod
    def cancellation(
        cls,
        tenant_id: str,
        event_id: str,
        occurred_at: Any = None,
        provider_customer_id: Optional[str] = None,
        provider_subscription_id: Optional[str] = None,
    ) -> "BillingChangeEvent":
        """Subscription deleted: tier free, status cancelled."""
        try:
            return cls(
                tenant_id=tenant_id,
                tier=Tier.FREE,
                status=SubscriptionStatus.CANCELLED,
                event_id=event_id,
                occurred_at=_from_epoch(occurred_at),
                provider_customer_id=provider_customer_id,
                provider_subscription_id=provider_subscription_id,
            )
        except ValidationError as e:
            raise InvalidBillingEventError(str(e), event_id=event_id) from e

    def to_billing_state(self, received_at: Optional[datetime] = None) -> BillingState:
        """
        Billing state carried by this event.

        synced_at is the provider's event time; events without one are
        ordered by when they were received.
        """
        return BillingState(
            tenant_id=self.tenant_id,
            tier=self.tier,
            status=self.status,
            current_period_start=self.period_start,
            current_period_end=self.period_end,
            trial_end=self.trial_end,
            last_sync_event_id=self.event_id,
            synced_at=self.occurred_at or received_at or utc_now(),
            provider_customer_id=self.provider_customer_id,
            provider_subscription_id=self.provider_subscription_id,
        )
