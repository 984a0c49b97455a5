"""
Entitlement engine metrics for monitoring.

Keeps in-process counters and emits structured log events that can be
picked up by log aggregators for dashboards and alerting.

Metrics:
- cache_hits / cache_misses: entitlement cache effectiveness
- checks_allowed / checks_denied: resolved outcomes
- unknown_features: caller errors (feature not in the policy table)
- billing_fallbacks: billing reads that failed closed
- audit_written / audit_dropped: audit sink health
- syncs_applied / syncs_skipped: billing sync outcomes
"""

import logging
from threading import Lock
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Dedicated metrics logger for easy filtering
metrics_logger = logging.getLogger("entitlements.metrics")

_COUNTERS = (
    "cache_hits",
    "cache_misses",
    "checks_allowed",
    "checks_denied",
    "unknown_features",
    "billing_fallbacks",
    "audit_written",
    "audit_dropped",
    "syncs_applied",
    "syncs_skipped",
)


class EntitlementMetrics:
    """Thread-safe counters plus structured metric log lines."""

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[str, int] = {name: 0 for name in _COUNTERS}

    def _incr(self, name: str) -> None:
        with self._lock:
            self._counters[name] += 1

    def record_check(self, tenant_id: str, feature: str, enabled: bool, cached: bool) -> None:
        self._incr("cache_hits" if cached else "cache_misses")
        self._incr("checks_allowed" if enabled else "checks_denied")
        metrics_logger.debug(
            "entitlement_checked",
            extra={
                "metric": "entitlement_checked",
                "tenant_id": tenant_id,
                "feature": feature,
                "enabled": enabled,
                "cached": cached,
            }
        )

    def record_unknown_feature(self, tenant_id: str, feature: str) -> None:
        self._incr("unknown_features")
        metrics_logger.info(
            "entitlement_unknown_feature",
            extra={"metric": "entitlement_unknown_feature", "tenant_id": tenant_id, "feature": feature}
        )

    def record_billing_fallback(self, tenant_id: str, cause: str) -> None:
        self._incr("billing_fallbacks")
        metrics_logger.warning(
            "billing_read_fallback",
            extra={"metric": "billing_read_fallback", "tenant_id": tenant_id, "cause": cause}
        )

    def record_audit_written(self, tenant_id: str, action: str) -> None:
        self._incr("audit_written")
        metrics_logger.debug(
            "audit_entry_written",
            extra={"metric": "audit_entry_written", "tenant_id": tenant_id, "action": action}
        )

    def record_audit_dropped(self, tenant_id: Optional[str], cause: str) -> None:
        self._incr("audit_dropped")
        metrics_logger.warning(
            "audit_entry_dropped",
            extra={"metric": "audit_entry_dropped", "tenant_id": tenant_id, "cause": cause}
        )

    def record_sync(self, tenant_id: str, applied: bool) -> None:
        self._incr("syncs_applied" if applied else "syncs_skipped")
        metrics_logger.info(
            "billing_sync",
            extra={"metric": "billing_sync", "tenant_id": tenant_id, "applied": applied}
        )

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> None:
        with self._lock:
            for name in self._counters:
                self._counters[name] = 0


_metrics_instance: Optional[EntitlementMetrics] = None
_metrics_lock = Lock()


def get_entitlement_metrics() -> EntitlementMetrics:
    """Get the process-wide metrics instance."""
    global _metrics_instance
    if _metrics_instance is None:
        with _metrics_lock:
            if _metrics_instance is None:
                _metrics_instance = EntitlementMetrics()
    return _metrics_instance
