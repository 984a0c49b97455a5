"""
Entitlement models - canonical types for tier-based feature gating.

Provides:
- Tier: Ordered subscription tiers (compare by rank, never by name)
- Feature: Closed catalogue of gated capabilities
- SubscriptionStatus: Billing statuses synced from the payment provider
- DenialReason: Stable reason codes (public contract)
- BillingState: Per-tenant billing snapshot
- EntitlementCheckResult: Immutable allow/deny outcome for (tenant, feature)

CRITICAL: enabled is True if and only if reason is None.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise naive datetimes (e.g. read back from SQLite) to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Canonical enums
# ---------------------------------------------------------------------------

class Tier(str, Enum):
    """Subscription tiers, declared in ascending order of capability."""
    FREE = "free"
    PRO = "pro"
    PRO_PLUS = "pro_plus"
    PORTFOLIO = "portfolio"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    @classmethod
    def parse(cls, value: Union[str, "Tier"]) -> "Tier":
        """Accept enum members or their string values ("pro-plus" is tolerated)."""
        if isinstance(value, Tier):
            return value
        normalised = (value or "").strip().lower().replace("-", "_")
        return cls(normalised)


_TIER_RANKS: Dict[Tier, int] = {tier: index for index, tier in enumerate(Tier)}


class Feature(str, Enum):
    """Gated capabilities. Must be registered here before use in gating."""
    PARCEL_DISCOVERY = "ccp-01:parcel-discovery"
    PARCEL_CONTEXT = "ccp-02:parcel-context"
    REPORT_GENERATION = "ccp-03:report-generation"
    REPORT_VIEWING = "ccp-04:report-viewing"
    BILLING = "ccp-05:billing"
    BRANDED_REPORTS = "ccp-06:branded-reports"
    AUDIT_LOGGING = "ccp-07:audit-logging"
    SAVED_PARCELS = "ccp-08:saved-parcels"
    CONTACT_UPLOAD = "ccp-09:contact-upload"
    COLLABORATION = "ccp-10:collaboration"
    EVENTS = "ccp-11:events"
    SHARING = "ccp-12:sharing"
    PREMIUM_FEATURES = "ccp-14:premium-features"
    EXPORT = "ccp-15:export"

    @classmethod
    def lookup(cls, value: Union[str, "Feature"]) -> Optional["Feature"]:
        """Return the catalogue member for value, or None if it is not registered."""
        if isinstance(value, Feature):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class SubscriptionStatus(str, Enum):
    """Subscription status as stored in billing state."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    TRIAL = "trial"

    @classmethod
    def from_provider_status(cls, status: Optional[str]) -> "SubscriptionStatus":
        """
        Map a payment-provider status string to a stored status.

        Unrecognised statuses map to UNPAID so that they deny paid access.
        """
        status_lower = (status or "").strip().lower()
        direct = {
            "active": cls.ACTIVE,
            "trial": cls.TRIAL,
            "trialing": cls.TRIAL,
            "past_due": cls.PAST_DUE,
            "incomplete": cls.PAST_DUE,
            "unpaid": cls.UNPAID,
            "paused": cls.UNPAID,
            "cancelled": cls.CANCELLED,
            "canceled": cls.CANCELLED,
            "incomplete_expired": cls.CANCELLED,
        }
        return direct.get(status_lower, cls.UNPAID)


class DenialReason(str, Enum):
    """
    Reason codes for a denied entitlement.

    Stable public contract. The resolver in this package only emits
    TIER_INSUFFICIENT, GRACE_PERIOD_EXPIRED and SUBSCRIPTION_INACTIVE; the
    engine adds FEATURE_UNAVAILABLE. The rest belong to other gating layers.
    """
    TIER_INSUFFICIENT = "TIER_INSUFFICIENT"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    GRACE_PERIOD_EXPIRED = "GRACE_PERIOD_EXPIRED"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    TRIAL_NOT_STARTED = "TRIAL_NOT_STARTED"
    FEATURE_UNAVAILABLE = "FEATURE_UNAVAILABLE"
    SYSTEM_MAINTENANCE = "SYSTEM_MAINTENANCE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BillingState:
    """
    Billing snapshot for one tenant, as last synced from the payment provider.

    synced_at is the provider event timestamp and orders sync events
    ("newer wins").
    """
    tenant_id: str
    tier: Tier = Tier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    last_sync_event_id: Optional[str] = None
    synced_at: Optional[datetime] = None
    provider_customer_id: Optional[str] = None
    provider_subscription_id: Optional[str] = None

    @classmethod
    def default_for(cls, tenant_id: str) -> "BillingState":
        """The fail-closed state: free tier, active, never synced."""
        return cls(tenant_id=tenant_id)

    def is_newer_than(self, other: Optional["BillingState"]) -> bool:
        """
        True if this state should supersede other.

        An event id that was already applied is never newer. Otherwise the
        provider timestamp decides; a state with no timestamp never wins
        against one that has it.
        """
        if other is None or other.last_sync_event_id is None:
            return True
        if self.last_sync_event_id == other.last_sync_event_id:
            return False
        if self.synced_at is None:
            return False
        if other.synced_at is None:
            return True
        return as_utc(self.synced_at) > as_utc(other.synced_at)

    def to_dict(self) -> Dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "tenantId": self.tenant_id,
            "tier": self.tier.value,
            "status": self.status.value,
            "currentPeriodStart": _iso(self.current_period_start),
            "currentPeriodEnd": _iso(self.current_period_end),
            "trialEnd": _iso(self.trial_end),
            "lastSyncEventId": self.last_sync_event_id,
            "syncedAt": _iso(self.synced_at),
            "providerCustomerId": self.provider_customer_id,
            "providerSubscriptionId": self.provider_subscription_id,
        }


@dataclass(frozen=True)
class EntitlementCheckResult:
    """
    Resolved entitlement for one (tenant, feature) pair.

    Immutable. A cache hit is served as a copy with cached=True and a freshly
    computed cache_ttl_remaining (seconds).
    """
    feature: str
    enabled: bool
    tier: Tier
    reason: Optional[DenialReason]
    resolved_at: datetime = field(default_factory=utc_now)
    cached: bool = False
    cache_ttl_remaining: Optional[float] = None

    def __post_init__(self):
        if self.enabled != (self.reason is None):
            raise ValueError(
                f"enabled={self.enabled} is inconsistent with reason={self.reason}"
            )

    @classmethod
    def allowed(cls, feature: str, tier: Tier, resolved_at: Optional[datetime] = None) -> "EntitlementCheckResult":
        return cls(
            feature=feature,
            enabled=True,
            tier=tier,
            reason=None,
            resolved_at=resolved_at or utc_now(),
        )

    @classmethod
    def denied(
        cls,
        feature: str,
        tier: Tier,
        reason: DenialReason,
        resolved_at: Optional[datetime] = None,
    ) -> "EntitlementCheckResult":
        return cls(
            feature=feature,
            enabled=False,
            tier=tier,
            reason=reason,
            resolved_at=resolved_at or utc_now(),
        )

    def as_cache_hit(self, ttl_remaining: float) -> "EntitlementCheckResult":
        return replace(self, cached=True, cache_ttl_remaining=ttl_remaining)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation with the public field names."""
        ttl = None
        if self.cache_ttl_remaining is not None:
            ttl = max(1, math.ceil(self.cache_ttl_remaining))
        return {
            "feature": self.feature,
            "enabled": self.enabled,
            "tier": self.tier.value,
            "reason": self.reason.value if self.reason else None,
            "cached": self.cached,
            "resolvedAt": self.resolved_at.isoformat(),
            "cacheTtlRemaining": ttl,
        }
