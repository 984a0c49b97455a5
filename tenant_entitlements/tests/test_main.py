"""
End-to-end wiring tests: real SQLAlchemy repositories on SQLite.
"""

import logging
from datetime import datetime, timezone

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from tenant_entitlements.config.settings import EntitlementSettings
from tenant_entitlements.database.session import create_session_factory
from tenant_entitlements.entitlements.errors import PolicyConfigError
from tenant_entitlements.entitlements.middleware import require_feature
from tenant_entitlements.entitlements.models import (
    DenialReason,
    Feature,
    SubscriptionStatus,
    Tier,
)
from tenant_entitlements.main import build_entitlement_runtime, configure_logging, create_app
from tenant_entitlements.repositories import SqlAlchemyAuditLogRepository
from tenant_entitlements.services.billing_events import BillingChangeEvent


@pytest.fixture
def audit_url(tmp_path):
    return f"sqlite:///{tmp_path / 'audit.db'}"


@pytest.fixture
def runtime(tmp_path, audit_url):
    settings = EntitlementSettings(
        database_url=f"sqlite:///{tmp_path / 'billing.db'}",
        audit_database_url=audit_url,
    )
    runtime = build_entitlement_runtime(settings, create_tables=True)
    yield runtime
    runtime.shutdown()


class TestRuntime:
    """Components built from settings work together."""

    def test_unknown_tenant_is_free(self, runtime):
        result = runtime.engine.check("ws_new", Feature.EXPORT)
        assert result.enabled is False
        assert result.tier is Tier.FREE
        assert result.reason is DenialReason.TIER_INSUFFICIENT

    def test_sync_then_check(self, runtime):
        runtime.engine.check("ws_1", Feature.EXPORT)

        sync = runtime.sync_handler.apply_payload({
            "tenantId": "ws_1",
            "tier": "portfolio",
            "status": "active",
            "eventId": "evt_1",
            "occurredAt": "2026-03-01T12:00:00Z",
        })
        result = runtime.engine.check("ws_1", Feature.EXPORT, actor_id="user_1")

        assert sync.applied is True
        assert result.enabled is True
        assert result.cached is False

    def test_cancellation_then_check(self, runtime):
        runtime.sync_handler.apply("ws_1", BillingChangeEvent.from_payload({
            "tenantId": "ws_1", "tier": "enterprise", "status": "active", "eventId": "evt_1",
            "occurredAt": "2026-03-01T12:00:00Z",
        }).to_billing_state(), "evt_1")
        runtime.sync_handler.apply_event(
            BillingChangeEvent.cancellation("ws_1", "evt_2", occurred_at=datetime(2026, 3, 2, 12, tzinfo=timezone.utc))
        )

        result = runtime.engine.check("ws_1", Feature.PARCEL_DISCOVERY)
        assert runtime.store.get("ws_1").status is SubscriptionStatus.CANCELLED
        assert result.reason is DenialReason.SUBSCRIPTION_INACTIVE

    def test_checks_are_persisted_to_audit_table(self, runtime, audit_url):
        runtime.engine.check("ws_1", Feature.EXPORT, actor_id="user_1", audit_metadata={"email": "ana@example.com"})
        assert runtime.audit_sink.flush(timeout=5)

        audit_repo = SqlAlchemyAuditLogRepository(create_session_factory(audit_url))
        (row,) = audit_repo.list_for_tenant("ws_1")
        assert row.action == "entitlement.denied"
        assert row.event_metadata["email"] == "***@example.com"
        assert row.event_metadata["policy_version"] == runtime.policy.version

    def test_malformed_policy_fails_at_build(self, make_yaml_config):
        path = make_yaml_config("tiers.yml", {"version": "1", "features": {"x": {"minimum_tier": "gold"}}})
        settings = EntitlementSettings(database_url="sqlite://", tier_policy_path=str(path))

        with pytest.raises(PolicyConfigError):
            build_entitlement_runtime(settings, create_tables=True)

    def test_missing_database_url_fails_at_build(self):
        with pytest.raises(ValueError):
            build_entitlement_runtime(EntitlementSettings())


class TestCreateApp:
    """The app exposes the runtime for route dependencies."""

    def test_lifespan_attaches_engine(self, runtime):
        app = create_app(runtime)

        @app.get("/api/exports")
        def export(entitlement=Depends(require_feature(Feature.EXPORT))):
            return {"ok": True}

        @app.middleware("http")
        async def tenant_context(request, call_next):
            request.state.tenant_id = "ws_1"
            request.state.user_id = "user_1"
            return await call_next(request)

        with TestClient(app) as client:
            assert app.state.entitlement_engine is runtime.engine
            response = client.get("/api/exports")

        assert response.status_code == 402
        assert response.json()["detail"]["reason"] == "TIER_INSUFFICIENT"


class TestConfigureLogging:

    def test_sets_root_level(self, monkeypatch):
        root = logging.getLogger()
        monkeypatch.setattr(root, "handlers", [])
        monkeypatch.setattr(root, "level", logging.WARNING)

        configure_logging("debug")

        assert root.level == logging.DEBUG
