"""SQLAlchemy models for billing state and the audit trail."""

from tenant_entitlements.models.billing_state import BillingStateRecord
from tenant_entitlements.models.audit_log import AuditLogRecord, AppendOnlyViolation

__all__ = [
    "BillingStateRecord",
    "AuditLogRecord",
    "AppendOnlyViolation",
]
