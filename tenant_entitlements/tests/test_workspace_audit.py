"""
Tests for workspace configuration audit helpers.
"""

from unittest.mock import MagicMock

import pytest

from tenant_entitlements.entitlements.audit import AuditSink
from tenant_entitlements.entitlements.models import Tier
from tenant_entitlements.platform.audit import (
    SYSTEM_BILLING_ACTOR,
    WorkspaceAuditAction,
    record_billing_sync,
    record_blocked_access,
    record_member_added,
    record_member_removed,
    record_member_role_changed,
    record_plan_change,
    record_settings_updated,
    record_workspace_created,
    record_workspace_updated,
)


@pytest.fixture
def mock_sink():
    return MagicMock(spec=AuditSink)


class TestWorkspaceAuditHelpers:
    """Each helper builds the entry and submits it once."""

    def test_workspace_created(self, mock_sink):
        entry = record_workspace_created(mock_sink, "ws_1", "user_1", "Acme Land", "pro")

        mock_sink.append.assert_called_once_with(entry)
        assert entry.action == WorkspaceAuditAction.CREATED.value
        assert entry.result == "success"
        assert entry.metadata["new_values"] == {"name": "Acme Land", "plan": "pro"}
        assert entry.metadata["resource_type"] == "workspace"

    def test_workspace_updated_lists_changed_fields(self, mock_sink):
        entry = record_workspace_updated(
            mock_sink,
            "ws_1",
            "user_1",
            old_values={"name": "Acme", "slug": "acme", "timezone": "UTC"},
            new_values={"name": "Acme Land", "slug": "acme", "logo": "x.png"},
        )

        assert entry.action == "workspace.updated"
        assert entry.metadata["changed_fields"] == ["name", "logo"]

    def test_member_added(self, mock_sink):
        entry = record_member_added(mock_sink, "ws_1", "user_1", "user_2", "bo@example.com", "editor")

        assert entry.action == "workspace.member_added"
        assert entry.metadata["resource_id"] == "user_2"
        assert entry.to_record()["event_metadata"]["new_values"]["email"] == "***@example.com"

    def test_member_removed(self, mock_sink):
        entry = record_member_removed(mock_sink, "ws_1", "user_1", "user_2", role="viewer")
        assert entry.action == "workspace.member_removed"
        assert entry.metadata["old_values"] == {"role": "viewer"}

    def test_member_role_changed(self, mock_sink):
        entry = record_member_role_changed(mock_sink, "ws_1", "user_1", "user_2", "viewer", "admin")

        assert entry.action == "workspace.member_role_changed"
        assert entry.metadata["old_values"] == {"role": "viewer"}
        assert entry.metadata["new_values"] == {"role": "admin"}
        assert entry.metadata["changed_fields"] == ["role"]

    def test_settings_updated(self, mock_sink):
        entry = record_settings_updated(
            mock_sink, "ws_1", "user_1", {"timezone": "UTC"}, {"timezone": "America/Denver"},
        )
        assert entry.action == "workspace.settings_updated"
        assert entry.metadata["changed_fields"] == ["timezone"]

    def test_blocked_access_is_denied_outcome(self, mock_sink):
        entry = record_blocked_access(
            mock_sink, "ws_1", "user_1", "ccp-15:export", reason="TIER_INSUFFICIENT", tier="pro",
        )

        assert entry.action == "workspace.entitlement_blocked"
        assert entry.result == "denied"
        assert entry.feature == "ccp-15:export"
        assert entry.reason == "TIER_INSUFFICIENT"
        assert entry.tier == "pro"

    def test_missing_sink_is_tolerated(self):
        entry = record_member_removed(None, "ws_1", "user_1", "user_2")
        assert entry.action == "workspace.member_removed"


class TestBillingAuditHelpers:
    """Plan change and billing sync entries."""

    @pytest.mark.parametrize("old,new,action", [
        (Tier.FREE, Tier.PRO, "workspace.plan_upgraded"),
        (Tier.ENTERPRISE, Tier.PORTFOLIO, "workspace.plan_downgraded"),
    ])
    def test_plan_change_direction(self, mock_sink, old, new, action):
        entry = record_plan_change(mock_sink, "ws_1", old, new)

        assert entry.action == action
        assert entry.actor_id == SYSTEM_BILLING_ACTOR
        assert entry.metadata["old_values"] == {"tier": old.value}
        assert entry.metadata["new_values"] == {"tier": new.value}

    def test_same_tier_is_not_a_plan_change(self, mock_sink):
        assert record_plan_change(mock_sink, "ws_1", Tier.PRO, Tier.PRO) is None
        mock_sink.append.assert_not_called()

    def test_billing_sync(self, mock_sink):
        entry = record_billing_sync(
            mock_sink, "ws_1", Tier.PRO, "active", "evt_1", provider_customer_id="cus_1",
        )

        assert entry.action == "workspace.billing_sync"
        assert entry.actor_id == SYSTEM_BILLING_ACTOR
        assert entry.metadata["event_id"] == "evt_1"
        assert entry.metadata["resource_id"] == "cus_1"
