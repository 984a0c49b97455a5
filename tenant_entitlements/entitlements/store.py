"""
Billing State Store - fail-closed reads of tenant billing state.

Provides:
- BillingStateStore.get(tenant_id): never raises; missing record, read error
  or timeout all yield the default free/active state
- BillingStateStore.upsert(state): idempotent, "newer wins" by sync timestamp

Reads run on a dedicated thread pool so a bounded timeout can be enforced
without tying billing reads to any other resource (audit writes have their
own pool).

CRITICAL: An unreachable billing backend must never unlock a paid feature.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional

from tenant_entitlements.entitlements.models import BillingState
from tenant_entitlements.monitoring.entitlement_metrics import (
    EntitlementMetrics,
    get_entitlement_metrics,
)
from tenant_entitlements.repositories.billing_state_repo import BillingStateRepository

logger = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT_SECONDS = 2.0
DEFAULT_READ_WORKERS = 8


class BillingStateStore:
    """
    Fetches and upserts tenant billing state through a repository.

    Usage:
        store = BillingStateStore(SqlAlchemyBillingStateRepository(sessions))
        billing = store.get("ws_123")      # always returns a BillingState
        store.upsert(new_state)            # False if stale or duplicate
    """

    def __init__(
        self,
        repository: BillingStateRepository,
        read_timeout_seconds: float = DEFAULT_READ_TIMEOUT_SECONDS,
        max_workers: int = DEFAULT_READ_WORKERS,
        metrics: Optional[EntitlementMetrics] = None,
    ):
        self._repository = repository
        self._read_timeout = read_timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="billing-read",
        )
        self._metrics = metrics or get_entitlement_metrics()

    def get(self, tenant_id: str) -> BillingState:
        """
        Return the tenant's billing state, failing closed.

        Never raises for missing records, repository errors or timeouts.
        """
        try:
            future = self._executor.submit(self._repository.fetch, tenant_id)
            state = future.result(timeout=self._read_timeout)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "Billing state read timed out, failing closed",
                extra={"tenant_id": tenant_id, "timeout_seconds": self._read_timeout},
            )
            self._metrics.record_billing_fallback(tenant_id, "timeout")
            return BillingState.default_for(tenant_id)
        except Exception as e:
            logger.warning(
                "Billing state read failed, failing closed",
                extra={"tenant_id": tenant_id, "error": str(e), "error_type": type(e).__name__},
            )
            self._metrics.record_billing_fallback(tenant_id, type(e).__name__)
            return BillingState.default_for(tenant_id)

        if state is None:
            logger.debug("No billing record, using default state", extra={"tenant_id": tenant_id})
            return BillingState.default_for(tenant_id)

        if state.tenant_id != tenant_id:
            logger.error(
                "Billing repository returned another tenant's state, failing closed",
                extra={"tenant_id": tenant_id, "returned_tenant_id": state.tenant_id},
            )
            self._metrics.record_billing_fallback(tenant_id, "tenant_mismatch")
            return BillingState.default_for(tenant_id)

        return state

    def upsert(self, state: BillingState) -> bool:
        """
        Write state if it is strictly newer than what is stored.

        Returns True if written, False for a duplicate or out-of-order event.
        Repository errors propagate to the sync handler.
        """
        if not state.last_sync_event_id:
            raise ValueError("BillingState.last_sync_event_id is required for upsert")

        written = self._repository.upsert_if_newer(state)
        if written:
            logger.info(
                "Billing state updated",
                extra={
                    "tenant_id": state.tenant_id,
                    "tier": state.tier.value,
                    "status": state.status.value,
                    "event_id": state.last_sync_event_id,
                },
            )
        else:
            logger.info(
                "Billing state upsert skipped (stale or duplicate event)",
                extra={"tenant_id": state.tenant_id, "event_id": state.last_sync_event_id},
            )
        return written

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
