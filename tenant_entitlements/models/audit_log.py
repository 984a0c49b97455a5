"""
AuditLogRecord - append-only audit trail for entitlement checks and
workspace configuration changes.

CRITICAL: This table is append-only. The ORM rejects UPDATE and DELETE on
mapped instances; production databases additionally revoke those grants.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Boolean, Index, JSON, event
from sqlalchemy.dialects.postgresql import JSONB

from tenant_entitlements.db_base import Base
from tenant_entitlements.models.base import TenantScopedMixin, generate_uuid

# Use JSON with PostgreSQL variant for JSONB - allows SQLite in tests
JSONType = JSON().with_variant(JSONB(), "postgresql")


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to update or delete an audit row."""
    pass


class AuditLogRecord(Base, TenantScopedMixin):
    """Persisted AuditEntry."""

    __tablename__ = "entitlement_audit_log"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    actor_id = Column(String(255), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    feature = Column(String(100), nullable=True, index=True)
    result = Column(String(20), nullable=False)
    reason = Column(String(64), nullable=True)
    tier = Column(String(32), nullable=True)
    cached = Column(Boolean, nullable=True)
    timestamp = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    event_metadata = Column("metadata", JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_entitlement_audit_tenant_timestamp", "tenant_id", "timestamp"),
        Index("ix_entitlement_audit_tenant_feature", "tenant_id", "feature"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLogRecord(id={self.id}, tenant_id={self.tenant_id}, "
            f"action={self.action}, result={self.result})>"
        )


@event.listens_for(AuditLogRecord, "before_update")
def _reject_update(mapper, connection, target):
    raise AppendOnlyViolation(f"Audit entry {target.id} cannot be updated")


@event.listens_for(AuditLogRecord, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"Audit entry {target.id} cannot be deleted")
