"""
Tests for the require_feature() route dependency.
"""

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from tenant_entitlements.entitlements.middleware import require_feature
from tenant_entitlements.entitlements.models import Feature, Tier
from tenant_entitlements.tests.conftest import billing_state


def _build_app(engine=None, audit_sink=None) -> FastAPI:
    app = FastAPI()
    if engine is not None:
        app.state.entitlement_engine = engine
    if audit_sink is not None:
        app.state.audit_sink = audit_sink

    @app.middleware("http")
    async def tenant_context(request: Request, call_next):
        request.state.tenant_id = request.headers.get("X-Tenant-Id")
        request.state.user_id = request.headers.get("X-User-Id")
        return await call_next(request)

    @app.post("/api/exports")
    def create_export(entitlement=Depends(require_feature(Feature.EXPORT))):
        return {"ok": True, "tier": entitlement.tier.value}

    @app.get("/api/reports")
    def list_reports(entitlement=Depends(require_feature("ccp-06:branded-reports", audit_blocked=False))):
        return {"ok": True}

    return app


@pytest.fixture
def client(engine, audit_sink):
    return TestClient(_build_app(engine, audit_sink))


class TestRequireFeature:
    """Gate behavior by tenant entitlement."""

    def test_entitled_tenant_passes(self, client, billing_repo):
        billing_repo.states["ws_1"] = billing_state("ws_1", tier=Tier.PORTFOLIO)

        response = client.post("/api/exports", headers={"X-Tenant-Id": "ws_1", "X-User-Id": "user_1"})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "tier": "portfolio"}

    def test_not_entitled_returns_402(self, client, billing_repo):
        billing_repo.states["ws_1"] = billing_state("ws_1", tier=Tier.PRO)

        response = client.post("/api/exports", headers={"X-Tenant-Id": "ws_1", "X-User-Id": "user_1"})

        assert response.status_code == 402
        detail = response.json()["detail"]
        assert detail["error"] == "entitlement_denied"
        assert detail["feature"] == Feature.EXPORT.value
        assert detail["enabled"] is False
        assert detail["tier"] == "pro"
        assert detail["reason"] == "TIER_INSUFFICIENT"

    def test_blocked_access_is_audited(self, client, audit_sink, audit_repo):
        client.post("/api/exports", headers={"X-Tenant-Id": "ws_1", "X-User-Id": "user_1"})
        audit_sink.flush(timeout=5)

        actions = sorted(e.action for e in audit_repo.entries)
        assert actions == ["entitlement.denied", "workspace.entitlement_blocked"]
        blocked = next(e for e in audit_repo.entries if e.action == "workspace.entitlement_blocked")
        assert blocked.metadata["path"] == "/api/exports"
        assert blocked.result == "denied"

    def test_blocked_audit_can_be_disabled(self, client, audit_sink, audit_repo):
        response = client.get("/api/reports", headers={"X-Tenant-Id": "ws_1", "X-User-Id": "user_1"})
        audit_sink.flush(timeout=5)

        assert response.status_code == 402
        assert [e.action for e in audit_repo.entries] == ["entitlement.denied"]

    def test_check_audit_carries_request_path(self, client, billing_repo, audit_sink, audit_repo):
        billing_repo.states["ws_1"] = billing_state("ws_1", tier=Tier.PORTFOLIO)

        client.post("/api/exports", headers={"X-Tenant-Id": "ws_1", "X-User-Id": "user_1"})
        audit_sink.flush(timeout=5)

        (entry,) = audit_repo.entries
        assert entry.metadata["path"] == "/api/exports"
        assert entry.metadata["method"] == "POST"

    @pytest.mark.security
    def test_missing_tenant_context_returns_403(self, client):
        response = client.post("/api/exports")
        assert response.status_code == 403

    @pytest.mark.security
    def test_blank_tenant_context_returns_403(self, client, billing_repo):
        response = client.post("/api/exports", headers={"X-Tenant-Id": "   ", "X-User-Id": "user_1"})

        assert response.status_code == 403
        assert response.json()["detail"] == "Tenant context not available"
        assert billing_repo.fetch_calls == 0

    def test_missing_engine_returns_503(self):
        client = TestClient(_build_app())
        response = client.post("/api/exports", headers={"X-Tenant-Id": "ws_1"})
        assert response.status_code == 503
