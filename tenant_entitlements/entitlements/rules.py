"""
Denial rules - decide why a tenant may not use a feature.

Pure and total: every (billing state, required tier) pair maps to exactly
one outcome, either None (allowed) or a single DenialReason.

Evaluation order, first match wins:
    1. cancelled                      -> SUBSCRIPTION_INACTIVE
    2. past_due / unpaid              -> SUBSCRIPTION_INACTIVE
    3. trial with trial_end passed    -> GRACE_PERIOD_EXPIRED
    4. tier below required tier       -> TIER_INSUFFICIENT
    5. otherwise                      -> None
"""

from datetime import datetime
from typing import Callable, Optional

from tenant_entitlements.entitlements.models import (
    BillingState,
    DenialReason,
    SubscriptionStatus,
    Tier,
    as_utc,
    utc_now,
)
from tenant_entitlements.entitlements.policy import TierPolicyTable

_INACTIVE_STATUSES = frozenset({
    SubscriptionStatus.CANCELLED,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.UNPAID,
})


class DenialReasonResolver:
    """Resolve the canonical denial reason for a billing state."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def resolve(
        self,
        billing: BillingState,
        required_tier: Tier,
        now: Optional[datetime] = None,
    ) -> Optional[DenialReason]:
        if billing.status in _INACTIVE_STATUSES:
            return DenialReason.SUBSCRIPTION_INACTIVE

        if billing.status == SubscriptionStatus.TRIAL and billing.trial_end is not None:
            current = as_utc(now or self._clock())
            if current > as_utc(billing.trial_end):
                return DenialReason.GRACE_PERIOD_EXPIRED

        if not TierPolicyTable.is_sufficient(billing.tier, required_tier):
            return DenialReason.TIER_INSUFFICIENT

        return None
