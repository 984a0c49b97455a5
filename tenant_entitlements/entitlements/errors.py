"""
Structured error classes for entitlement resolution.
"""

from typing import Optional

from fastapi import status


class EntitlementError(Exception):
    """Base exception for entitlement errors."""
    pass


class InvalidTenantError(EntitlementError, ValueError):
    """
    Raised when a caller passes an empty tenant id.

    This is a broken integration, not a runtime condition, so it is the one
    failure surfaced to callers of check().
    """

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} requires a non-empty tenant_id")


class PolicyConfigError(EntitlementError):
    """Raised at load time when the tier policy file is malformed."""
    pass


class InvalidBillingEventError(EntitlementError, ValueError):
    """Raised when an inbound billing event cannot be interpreted."""

    def __init__(self, detail: str, event_id: Optional[str] = None):
        self.detail = detail
        self.event_id = event_id
        super().__init__(f"Invalid billing event {event_id or '<unknown>'}: {detail}")


class BillingSyncError(EntitlementError):
    """Raised when billing state could not be persisted during a sync."""

    def __init__(self, tenant_id: str, event_id: str, cause: Optional[Exception] = None):
        self.tenant_id = tenant_id
        self.event_id = event_id
        self.cause = cause
        super().__init__(f"Billing sync failed for tenant {tenant_id} (event {event_id}): {cause}")


class EntitlementDeniedError(EntitlementError):
    """
    Raised by request gates when a feature entitlement check fails.

    Carries the full check result so the response body matches the public
    result shape.
    """

    def __init__(self, result, http_status: int = status.HTTP_402_PAYMENT_REQUIRED):
        self.result = result
        self.http_status = http_status
        reason = result.reason.value if result.reason else None
        super().__init__(f"Feature '{result.feature}' denied: {reason}")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": "entitlement_denied",
            **self.result.to_dict(),
        }


class AuditWriteTimeoutError(EntitlementError):
    """Raised by an audit repository when an insert exceeds its time budget."""

    def __init__(self, audit_id: str, timeout_seconds: float):
        self.audit_id = audit_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Audit write {audit_id} exceeded {timeout_seconds:.3f}s")
