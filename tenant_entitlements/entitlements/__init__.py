"""
Tier-based feature entitlements.

This module provides:
- Tier, Feature, SubscriptionStatus, DenialReason: canonical enums
- BillingState, EntitlementCheckResult: value objects
- TierPolicyTable / load_tier_policy: feature -> minimum tier, from config/tier_policy.yml
- DenialReasonResolver: first-match denial rules
- EntitlementCache: sharded in-process TTL cache with tenant invalidation

The engine (service.py), billing store (store.py), audit sink (audit.py) and
FastAPI gate (middleware.py) are imported from their modules directly.

Resolution order: subscription status -> trial window -> tier -> allow
"""

from tenant_entitlements.entitlements.models import (
    BillingState,
    DenialReason,
    EntitlementCheckResult,
    Feature,
    SubscriptionStatus,
    Tier,
)
from tenant_entitlements.entitlements.errors import (
    AuditWriteTimeoutError,
    BillingSyncError,
    EntitlementDeniedError,
    EntitlementError,
    InvalidBillingEventError,
    InvalidTenantError,
    PolicyConfigError,
)
from tenant_entitlements.entitlements.policy import TierPolicyTable
from tenant_entitlements.entitlements.loader import (
    TierPolicyLoader,
    get_tier_policy,
    load_tier_policy,
)
from tenant_entitlements.entitlements.rules import DenialReasonResolver
from tenant_entitlements.entitlements.cache import CacheStats, EntitlementCache

__all__ = [
    "BillingState",
    "DenialReason",
    "EntitlementCheckResult",
    "Feature",
    "SubscriptionStatus",
    "Tier",
    "AuditWriteTimeoutError",
    "BillingSyncError",
    "EntitlementDeniedError",
    "EntitlementError",
    "InvalidBillingEventError",
    "InvalidTenantError",
    "PolicyConfigError",
    "TierPolicyTable",
    "TierPolicyLoader",
    "get_tier_policy",
    "load_tier_policy",
    "DenialReasonResolver",
    "CacheStats",
    "EntitlementCache",
]
