"""
Entitlement Engine - single entry point for entitlement checks.

Provides:
- check(tenant_id, feature, actor_id) -> EntitlementCheckResult
- check_many(tenant_id, features, actor_id) -> {feature: EntitlementCheckResult}
- enabled_features(tenant_id) -> [Feature]
- invalidate(tenant_id, reason)

Resolution: cache -> billing state -> denial rules -> cache fill -> audit.

Architecture:
- Fail-CLOSED: billing read failures resolve as the free/active default
- Unknown features deny with FEATURE_UNAVAILABLE and never read billing
- Audit submission is fire-and-forget and cannot change the result

CRITICAL: Callers gate features through this module only. Do NOT compare
tiers or read billing state directly for authorization.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from tenant_entitlements.entitlements.audit import AuditEntry, AuditSink
from tenant_entitlements.entitlements.cache import EntitlementCache
from tenant_entitlements.entitlements.errors import InvalidTenantError
from tenant_entitlements.entitlements.models import (
    BillingState,
    DenialReason,
    EntitlementCheckResult,
    Feature,
    Tier,
    utc_now,
)
from tenant_entitlements.entitlements.policy import TierPolicyTable
from tenant_entitlements.entitlements.rules import DenialReasonResolver
from tenant_entitlements.entitlements.store import BillingStateStore
from tenant_entitlements.monitoring.entitlement_metrics import (
    EntitlementMetrics,
    get_entitlement_metrics,
)

logger = logging.getLogger(__name__)

FeatureKey = Union[str, Feature]


def _feature_key(feature: FeatureKey) -> str:
    return feature.value if isinstance(feature, Feature) else feature


class _BillingOnce:
    """Loads a tenant's billing state on first use and reuses it."""

    def __init__(self, store: BillingStateStore, tenant_id: str):
        self._store = store
        self._tenant_id = tenant_id
        self._state: Optional[BillingState] = None

    def __call__(self) -> BillingState:
        if self._state is None:
            self._state = self._store.get(self._tenant_id)
        return self._state


class EntitlementEngine:
    """
    Resolves feature entitlements for tenants.

    Usage:
        engine = EntitlementEngine(policy, store, cache, audit_sink)

        result = engine.check("ws_123", Feature.COLLABORATION, actor_id="user_1")
        if not result.enabled:
            ...  # result.reason says why

    One instance per process; the cache it is given must be the same one
    the BillingSyncHandler invalidates.
    """

    def __init__(
        self,
        policy: TierPolicyTable,
        store: BillingStateStore,
        cache: EntitlementCache,
        audit_sink: Optional[AuditSink] = None,
        resolver: Optional[DenialReasonResolver] = None,
        clock: Callable[[], datetime] = utc_now,
        metrics: Optional[EntitlementMetrics] = None,
    ):
        self._policy = policy
        self._store = store
        self._cache = cache
        self._audit_sink = audit_sink
        self._clock = clock
        self._resolver = resolver or DenialReasonResolver(clock=clock)
        self._metrics = metrics or get_entitlement_metrics()

    @property
    def policy(self) -> TierPolicyTable:
        return self._policy

    def check(
        self,
        tenant_id: str,
        feature: FeatureKey,
        actor_id: Optional[str] = None,
        audit_metadata: Optional[Dict[str, Any]] = None,
    ) -> EntitlementCheckResult:
        """
        Resolve one feature for a tenant.

        Never raises for normal operation (insufficient tier, expired trial,
        unreachable billing). Raises InvalidTenantError for an empty tenant_id.
        """
        _require_tenant(tenant_id, "check")
        key = _feature_key(feature)
        if not self._policy.is_known_feature(key):
            return self._unavailable(tenant_id, key)

        generation = self._cache.generation(tenant_id)
        return self._resolve(
            tenant_id,
            key,
            generation,
            _BillingOnce(self._store, tenant_id),
            actor_id,
            audit_metadata,
        )

    def check_many(
        self,
        tenant_id: str,
        features: Iterable[FeatureKey],
        actor_id: Optional[str] = None,
        audit_metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, EntitlementCheckResult]:
        """
        Resolve several features for one tenant.

        Each feature resolves independently; cache hits short-circuit per
        feature and billing state is read at most once for all misses.
        """
        _require_tenant(tenant_id, "check_many")
        generation = self._cache.generation(tenant_id)
        load_billing = _BillingOnce(self._store, tenant_id)

        results: Dict[str, EntitlementCheckResult] = {}
        for feature in features:
            key = _feature_key(feature)
            if key in results:
                continue
            if not self._policy.is_known_feature(key):
                results[key] = self._unavailable(tenant_id, key)
                continue
            results[key] = self._resolve(
                tenant_id, key, generation, load_billing, actor_id, audit_metadata
            )
        return results

    def enabled_features(self, tenant_id: str, actor_id: Optional[str] = None) -> List[Feature]:
        """Features currently usable by the tenant, in policy table order."""
        features = self._policy.features()
        results = self.check_many(tenant_id, features, actor_id=actor_id)
        return [f for f in features if results[f.value].enabled]

    def invalidate(self, tenant_id: str, reason: Optional[str] = None) -> int:
        """Drop cached results for tenant, e.g. after an admin plan change."""
        _require_tenant(tenant_id, "invalidate")
        return self._cache.invalidate_tenant(tenant_id, reason=reason or "manual")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(
        self,
        tenant_id: str,
        feature: str,
        generation: int,
        load_billing: Callable[[], BillingState],
        actor_id: Optional[str],
        audit_metadata: Optional[Dict[str, Any]],
    ) -> EntitlementCheckResult:
        cached, found = self._cache.get(tenant_id, feature)
        if found:
            self._metrics.record_check(tenant_id, feature, cached.enabled, cached=True)
            self._audit(tenant_id, actor_id, cached, audit_metadata)
            return cached

        logger.debug("Entitlement cache miss", extra={"tenant_id": tenant_id, "feature": feature})
        billing = load_billing()
        now = self._clock()
        reason = self._resolver.resolve(billing, self._policy.required_tier(feature), now=now)
        if reason is None:
            result = EntitlementCheckResult.allowed(feature, billing.tier, resolved_at=now)
        else:
            result = EntitlementCheckResult.denied(feature, billing.tier, reason, resolved_at=now)

        self._cache.put(tenant_id, feature, result, generation=generation)
        self._metrics.record_check(tenant_id, feature, result.enabled, cached=False)
        self._audit(tenant_id, actor_id, result, audit_metadata)
        return result

    def _unavailable(self, tenant_id: str, feature: str) -> EntitlementCheckResult:
        logger.warning(
            "Entitlement check for unknown feature",
            extra={"tenant_id": tenant_id, "feature": feature},
        )
        self._metrics.record_unknown_feature(tenant_id, feature)
        return EntitlementCheckResult.denied(
            feature,
            Tier.FREE,
            DenialReason.FEATURE_UNAVAILABLE,
            resolved_at=self._clock(),
        )

    def _audit(
        self,
        tenant_id: str,
        actor_id: Optional[str],
        result: EntitlementCheckResult,
        metadata: Optional[Dict[str, Any]],
    ) -> None:
        if not actor_id or self._audit_sink is None:
            return
        try:
            entry = AuditEntry.from_check(
                tenant_id,
                actor_id,
                result,
                metadata={"policy_version": self._policy.version, **(metadata or {})},
            )
            self._audit_sink.append(entry)
        except Exception as e:
            # Auditing must never affect the decision returned to the caller.
            logger.warning(
                "Failed to submit entitlement audit entry",
                extra={"tenant_id": tenant_id, "feature": result.feature, "error": str(e)},
            )


def _require_tenant(tenant_id: Optional[str], operation: str) -> None:
    if not tenant_id or not str(tenant_id).strip():
        raise InvalidTenantError(operation)
