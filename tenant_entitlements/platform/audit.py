"""
Workspace audit events - tenant configuration changes on the shared trail.

Membership, role, plan and settings changes are recorded in the same
append-only table as entitlement checks, using the same AuditEntry shape
and the same non-blocking AuditSink.

Each helper builds the entry, submits it and returns it. Submission never
raises; a failed write is logged to the fallback logger by the sink.

Usage:
    from tenant_entitlements.platform.audit import record_member_added

    record_member_added(sink, "ws_123", actor_id="user_1",
                        member_id="user_2", member_email="a@b.com", role="editor")
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from tenant_entitlements.entitlements.audit import AuditEntry, AuditOutcome, AuditSink
from tenant_entitlements.entitlements.models import Tier

logger = logging.getLogger(__name__)

SYSTEM_BILLING_ACTOR = "system:billing-sync"


class WorkspaceAuditAction(str, Enum):
    """Workspace configuration audit actions."""
    CREATED = "workspace.created"
    UPDATED = "workspace.updated"
    MEMBER_ADDED = "workspace.member_added"
    MEMBER_REMOVED = "workspace.member_removed"
    MEMBER_ROLE_CHANGED = "workspace.member_role_changed"
    PLAN_UPGRADED = "workspace.plan_upgraded"
    PLAN_DOWNGRADED = "workspace.plan_downgraded"
    BILLING_SYNC = "workspace.billing_sync"
    SETTINGS_UPDATED = "workspace.settings_updated"
    ENTITLEMENT_BLOCKED = "workspace.entitlement_blocked"


class ResourceType(str, Enum):
    WORKSPACE = "workspace"
    MEMBER = "member"
    ENTITLEMENT = "entitlement"
    BILLING = "billing"


def build_workspace_entry(
    tenant_id: str,
    actor_id: Optional[str],
    action: WorkspaceAuditAction,
    resource_type: ResourceType,
    resource_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    changed_fields: Optional[List[str]] = None,
    outcome: AuditOutcome = AuditOutcome.SUCCESS,
    reason: Optional[str] = None,
    feature: Optional[str] = None,
    tier: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    """Build an AuditEntry for a workspace configuration change."""
    details: Dict[str, Any] = {
        "resource_type": resource_type.value,
        "resource_id": resource_id,
    }
    if old_values is not None:
        details["old_values"] = old_values
    if new_values is not None:
        details["new_values"] = new_values
    if changed_fields is not None:
        details["changed_fields"] = changed_fields
    if metadata:
        details.update(metadata)

    return AuditEntry(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=action.value,
        result=outcome.value,
        feature=feature,
        reason=reason,
        tier=tier,
        metadata=details,
    )


def _submit(sink: Optional[AuditSink], entry: AuditEntry) -> AuditEntry:
    if sink is None:
        logger.debug("No audit sink configured, entry not persisted", extra={"action": entry.action})
        return entry
    sink.append(entry)
    return entry


def record_workspace_created(
    sink: AuditSink,
    tenant_id: str,
    actor_id: str,
    workspace_name: str,
    plan: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        WorkspaceAuditAction.CREATED,
        ResourceType.WORKSPACE,
        resource_id=tenant_id,
        new_values={"name": workspace_name, "plan": plan},
        tier=plan,
        metadata=metadata,
    ))


def record_workspace_updated(
    sink: AuditSink,
    tenant_id: str,
    actor_id: str,
    old_values: Dict[str, Any],
    new_values: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    """Record a workspace update. changed_fields lists keys whose value differs."""
    changed_fields = [
        key for key in new_values
        if key not in old_values or old_values[key] != new_values[key]
    ]
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        WorkspaceAuditAction.UPDATED,
        ResourceType.WORKSPACE,
        resource_id=tenant_id,
        old_values=old_values,
        new_values=new_values,
        changed_fields=changed_fields,
        metadata=metadata,
    ))


def record_member_added(
    sink: AuditSink,
    tenant_id: str,
    actor_id: str,
    member_id: str,
    member_email: str,
    role: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        WorkspaceAuditAction.MEMBER_ADDED,
        ResourceType.MEMBER,
        resource_id=member_id,
        new_values={"email": member_email, "role": role},
        metadata=metadata,
    ))


def record_member_removed(
    sink: AuditSink,
    tenant_id: str,
    actor_id: str,
    member_id: str,
    role: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        WorkspaceAuditAction.MEMBER_REMOVED,
        ResourceType.MEMBER,
        resource_id=member_id,
        old_values={"role": role} if role else None,
        metadata=metadata,
    ))


def record_member_role_changed(
    sink: AuditSink,
    tenant_id: str,
    actor_id: str,
    member_id: str,
    old_role: str,
    new_role: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        WorkspaceAuditAction.MEMBER_ROLE_CHANGED,
        ResourceType.MEMBER,
        resource_id=member_id,
        old_values={"role": old_role},
        new_values={"role": new_role},
        changed_fields=["role"],
        metadata=metadata,
    ))


def record_settings_updated(
    sink: AuditSink,
    tenant_id: str,
    actor_id: str,
    old_values: Dict[str, Any],
    new_values: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    changed_fields = [k for k in new_values if old_values.get(k) != new_values[k]]
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        WorkspaceAuditAction.SETTINGS_UPDATED,
        ResourceType.WORKSPACE,
        resource_id=tenant_id,
        old_values=old_values,
        new_values=new_values,
        changed_fields=changed_fields,
        metadata=metadata,
    ))


def record_blocked_access(
    sink: AuditSink,
    tenant_id: str,
    actor_id: str,
    feature: str,
    reason: Optional[str],
    tier: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    """Record that a request was turned away by an entitlement gate."""
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        WorkspaceAuditAction.ENTITLEMENT_BLOCKED,
        ResourceType.ENTITLEMENT,
        resource_id=feature,
        outcome=AuditOutcome.DENIED,
        reason=reason,
        feature=feature,
        tier=tier,
        metadata=metadata,
    ))


def record_plan_change(
    sink: AuditSink,
    tenant_id: str,
    old_tier: Tier,
    new_tier: Tier,
    actor_id: str = SYSTEM_BILLING_ACTOR,
    reason: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[AuditEntry]:
    """Record an upgrade or downgrade. Returns None when the rank is unchanged."""
    if new_tier.rank == old_tier.rank:
        return None
    action = (
        WorkspaceAuditAction.PLAN_UPGRADED
        if new_tier.rank > old_tier.rank
        else WorkspaceAuditAction.PLAN_DOWNGRADED
    )
    return _submit(sink, build_workspace_entry(
        tenant_id,
        actor_id,
        action,
        ResourceType.BILLING,
        old_values={"tier": old_tier.value},
        new_values={"tier": new_tier.value},
        changed_fields=["tier"],
        reason=reason,
        tier=new_tier.value,
        metadata=metadata,
    ))


def record_billing_sync(
    sink: AuditSink,
    tenant_id: str,
    tier: Tier,
    status: str,
    event_id: str,
    provider_customer_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    return _submit(sink, build_workspace_entry(
        tenant_id,
        SYSTEM_BILLING_ACTOR,
        WorkspaceAuditAction.BILLING_SYNC,
        ResourceType.BILLING,
        resource_id=provider_customer_id,
        new_values={"tier": tier.value, "status": status},
        tier=tier.value,
        metadata={"event_id": event_id, **(metadata or {})},
    ))
