"""Persistence collaborators for the billing store and the audit sink."""

from tenant_entitlements.repositories.billing_state_repo import (
    BillingStateRepository,
    SqlAlchemyBillingStateRepository,
)
from tenant_entitlements.repositories.audit_log_repo import (
    AuditLogRepository,
    AuditSummary,
    SqlAlchemyAuditLogRepository,
)

__all__ = [
    "BillingStateRepository",
    "SqlAlchemyBillingStateRepository",
    "AuditLogRepository",
    "AuditSummary",
    "SqlAlchemyAuditLogRepository",
]
