"""
Billing sync handler with idempotency support.

Applies payment-provider billing changes to the billing state store and
invalidates the tenant's cached entitlements.

Guarantees:
- Idempotent under at-least-once delivery: a replayed or out-of-order
  event is a no-op ("newer wins" by provider event time)
- Invalidation always runs, for applied, skipped and failed events, and
  completes before apply() returns
- Applied syncs are audited as workspace.billing_sync, plus
  workspace.plan_upgraded / workspace.plan_downgraded on a tier change
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from tenant_entitlements.entitlements.audit import AuditSink
from tenant_entitlements.entitlements.cache import EntitlementCache
from tenant_entitlements.entitlements.errors import (
    BillingSyncError,
    InvalidBillingEventError,
    InvalidTenantError,
)
from tenant_entitlements.entitlements.models import BillingState, Tier, utc_now
from tenant_entitlements.entitlements.store import BillingStateStore
from tenant_entitlements.monitoring.entitlement_metrics import (
    EntitlementMetrics,
    get_entitlement_metrics,
)
from tenant_entitlements.platform.audit import record_billing_sync, record_plan_change
from tenant_entitlements.services.billing_events import BillingChangeEvent

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of applying a billing change."""
    applied: bool
    tenant_id: str
    event_id: str
    previous_tier: Optional[Tier] = None
    new_tier: Optional[Tier] = None
    skipped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied,
            "tenantId": self.tenant_id,
            "eventId": self.event_id,
            "previousTier": self.previous_tier.value if self.previous_tier else None,
            "newTier": self.new_tier.value if self.new_tier else None,
            "skippedReason": self.skipped_reason,
        }


class BillingSyncHandler:
    """
    Consumes billing-change events.

    Must share its EntitlementCache instance with the EntitlementEngine.
    """

    def __init__(
        self,
        store: BillingStateStore,
        cache: EntitlementCache,
        audit_sink: Optional[AuditSink] = None,
        metrics: Optional[EntitlementMetrics] = None,
    ):
        self._store = store
        self._cache = cache
        self._audit_sink = audit_sink
        self._metrics = metrics or get_entitlement_metrics()

    def apply(self, tenant_id: str, incoming_state: BillingState, event_id: str) -> SyncResult:
        """
        Upsert incoming_state for tenant_id if event_id is newer, then invalidate.

        Raises:
            InvalidTenantError: empty tenant_id
            InvalidBillingEventError: missing event_id, or state for another tenant
            BillingSyncError: the store write failed (after invalidation),
                so the provider should retry delivery
        """
        if not tenant_id or not tenant_id.strip():
            raise InvalidTenantError("apply")
        if not event_id:
            raise InvalidBillingEventError("event id is required")
        if incoming_state.tenant_id and incoming_state.tenant_id != tenant_id:
            raise InvalidBillingEventError(
                f"state is for tenant {incoming_state.tenant_id}, not {tenant_id}",
                event_id=event_id,
            )

        state = replace(
            incoming_state,
            tenant_id=tenant_id,
            last_sync_event_id=event_id,
            synced_at=incoming_state.synced_at or utc_now(),
        )
        previous = self._store.get(tenant_id)

        try:
            applied = self._store.upsert(state)
        except Exception as e:
            logger.error(
                "Failed to persist billing state",
                extra={"tenant_id": tenant_id, "event_id": event_id, "error": str(e)},
                exc_info=True,
            )
            raise BillingSyncError(tenant_id, event_id, cause=e) from e
        finally:
            # Duplicates may be upstream retries whose effect the cache has
            # not observed yet, so invalidate on every path.
            self._cache.invalidate_tenant(tenant_id, reason=f"billing_sync:{event_id}")

        self._metrics.record_sync(tenant_id, applied)

        if not applied:
            return SyncResult(
                applied=False,
                tenant_id=tenant_id,
                event_id=event_id,
                previous_tier=previous.tier,
                new_tier=previous.tier,
                skipped_reason="stale_or_duplicate",
            )

        logger.info(
            "Billing sync applied",
            extra={
                "tenant_id": tenant_id,
                "event_id": event_id,
                "previous_tier": previous.tier.value,
                "new_tier": state.tier.value,
                "status": state.status.value,
            },
        )
        self._audit_applied(previous, state)

        return SyncResult(
            applied=True,
            tenant_id=tenant_id,
            event_id=event_id,
            previous_tier=previous.tier,
            new_tier=state.tier,
        )

    def apply_event(self, event: BillingChangeEvent) -> SyncResult:
        """Apply a validated BillingChangeEvent."""
        return self.apply(event.tenant_id, event.to_billing_state(), event.event_id)

    def apply_payload(self, payload: Dict[str, Any]) -> SyncResult:
        """Validate a raw billing-change payload and apply it."""
        return self.apply_event(BillingChangeEvent.from_payload(payload))

    def _audit_applied(self, previous: BillingState, state: BillingState) -> None:
        if self._audit_sink is None:
            return
        try:
            record_billing_sync(
                self._audit_sink,
                state.tenant_id,
                tier=state.tier,
                status=state.status.value,
                event_id=state.last_sync_event_id,
                provider_customer_id=state.provider_customer_id,
            )
            record_plan_change(
                self._audit_sink,
                state.tenant_id,
                old_tier=previous.tier,
                new_tier=state.tier,
                reason="billing_sync",
                metadata={"event_id": state.last_sync_event_id},
            )
        except Exception as e:
            logger.warning(
                "Failed to submit billing sync audit entries",
                extra={"tenant_id": state.tenant_id, "error": str(e)},
            )
