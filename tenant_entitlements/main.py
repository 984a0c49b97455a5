"""
Process wiring for the entitlement engine.

Builds one policy table, cache, billing store, audit sink, engine and sync
handler per process. The billing store and the audit sink get separate
database engines and thread pools so a slow audit database cannot degrade
billing reads.

Usage:
    runtime = build_entitlement_runtime()
    app = create_app(runtime)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from tenant_entitlements.config.settings import EntitlementSettings
from tenant_entitlements.database.session import create_session_factory
from tenant_entitlements.entitlements.audit import AuditSink
from tenant_entitlements.entitlements.cache import EntitlementCache
from tenant_entitlements.entitlements.loader import load_tier_policy
from tenant_entitlements.entitlements.policy import TierPolicyTable
from tenant_entitlements.entitlements.service import EntitlementEngine
from tenant_entitlements.entitlements.store import BillingStateStore
from tenant_entitlements.monitoring.entitlement_metrics import get_entitlement_metrics
from tenant_entitlements.repositories import (
    SqlAlchemyAuditLogRepository,
    SqlAlchemyBillingStateRepository,
)
from tenant_entitlements.services.billing_sync_handler import BillingSyncHandler

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


@dataclass
class EntitlementRuntime:
    """Process-wide entitlement components."""
    settings: EntitlementSettings
    policy: TierPolicyTable
    cache: EntitlementCache
    store: BillingStateStore
    audit_sink: AuditSink
    engine: EntitlementEngine
    sync_handler: BillingSyncHandler

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Shutting down entitlement runtime")
        self.audit_sink.shutdown(wait=wait)
        self.store.shutdown(wait=wait)


def build_entitlement_runtime(
    settings: Optional[EntitlementSettings] = None,
    create_tables: bool = False,
) -> EntitlementRuntime:
    """
    Build the entitlement components from settings (default: environment).

    Raises PolicyConfigError for a malformed policy file and ValueError when
    DATABASE_URL is not set.
    """
    settings = settings or EntitlementSettings.from_env()
    metrics = get_entitlement_metrics()

    policy = load_tier_policy(settings.tier_policy_path)

    billing_sessions = create_session_factory(settings.database_url, create_tables=create_tables)
    audit_sessions = create_session_factory(
        settings.audit_database_url or settings.database_url,
        create_tables=create_tables,
        statement_timeout_seconds=settings.audit_write_timeout_seconds,
    )

    cache = EntitlementCache(
        ttl_seconds=settings.cache_ttl_seconds,
        shard_count=settings.cache_shards,
    )
    store = BillingStateStore(
        SqlAlchemyBillingStateRepository(billing_sessions),
        read_timeout_seconds=settings.billing_read_timeout_seconds,
        max_workers=settings.billing_read_workers,
        metrics=metrics,
    )
    audit_sink = AuditSink(
        SqlAlchemyAuditLogRepository(audit_sessions),
        write_timeout_seconds=settings.audit_write_timeout_seconds,
        max_workers=settings.audit_workers,
        max_pending=settings.audit_max_pending,
        metrics=metrics,
    )
    engine = EntitlementEngine(policy, store, cache, audit_sink=audit_sink, metrics=metrics)
    sync_handler = BillingSyncHandler(store, cache, audit_sink=audit_sink, metrics=metrics)

    logger.info(
        "Entitlement runtime ready",
        extra={
            "policy_version": policy.version,
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "cache_shards": settings.cache_shards,
        },
    )
    return EntitlementRuntime(
        settings=settings,
        policy=policy,
        cache=cache,
        store=store,
        audit_sink=audit_sink,
        engine=engine,
        sync_handler=sync_handler,
    )


def create_app(runtime: Optional[EntitlementRuntime] = None) -> FastAPI:
    """FastAPI app exposing the runtime on app.state for require_feature()."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal runtime
        if runtime is None:
            settings = EntitlementSettings.from_env()
            configure_logging(settings.log_level)
            runtime = build_entitlement_runtime(settings)
        app.state.entitlement_runtime = runtime
        app.state.entitlement_engine = runtime.engine
        app.state.audit_sink = runtime.audit_sink
        yield
        runtime.shutdown()

    return FastAPI(title="Tenant Entitlements", lifespan=lifespan)
