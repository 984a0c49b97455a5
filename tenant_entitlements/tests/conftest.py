"""
Shared test configuration and fixtures.

Provides:
- policy: the packaged tier policy table
- FakeMonotonic / FakeWallClock: injectable clocks for TTL and trial tests
- InMemoryBillingStateRepository / RecordingAuditRepository: test doubles
- session_factory: SQLite in-memory database with all tables created
- make_yaml_config: writes policy YAML files to a temp dir
"""

import os
import tempfile
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import yaml

from tenant_entitlements.database.session import create_session_factory
from tenant_entitlements.entitlements.audit import AuditEntry, AuditSink
from tenant_entitlements.entitlements.cache import EntitlementCache
from tenant_entitlements.entitlements.loader import load_tier_policy
from tenant_entitlements.entitlements.models import BillingState, SubscriptionStatus, Tier
from tenant_entitlements.entitlements.service import EntitlementEngine
from tenant_entitlements.entitlements.store import BillingStateStore
from tenant_entitlements.monitoring.entitlement_metrics import EntitlementMetrics
from tenant_entitlements.repositories import AuditLogRepository, BillingStateRepository
from tenant_entitlements.services.billing_sync_handler import BillingSyncHandler

# Set test environment
os.environ.setdefault("ENV", "test")

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Clocks
# =============================================================================

class FakeMonotonic:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """Manually advanced UTC wall clock."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# =============================================================================
# Test doubles
# =============================================================================

class InMemoryBillingStateRepository(BillingStateRepository):
    """Dict-backed repository with "newer wins" semantics and call counting."""

    def __init__(self, states: Optional[Dict[str, BillingState]] = None):
        self.states: Dict[str, BillingState] = dict(states or {})
        self.fetch_calls = 0
        self.upsert_calls = 0
        self._lock = threading.Lock()

    def fetch(self, tenant_id: str) -> Optional[BillingState]:
        with self._lock:
            self.fetch_calls += 1
            return self.states.get(tenant_id)

    def upsert_if_newer(self, state: BillingState) -> bool:
        with self._lock:
            self.upsert_calls += 1
            if not state.is_newer_than(self.states.get(state.tenant_id)):
                return False
            self.states[state.tenant_id] = state
            return True


class RecordingAuditRepository(AuditLogRepository):
    """Keeps inserted entries in memory."""

    def __init__(self):
        self.entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    def insert(self, entry: AuditEntry, timeout_seconds: Optional[float] = None) -> None:
        with self._lock:
            self.entries.append(entry)


class FailingAuditRepository(AuditLogRepository):
    """Every insert fails, like an unreachable audit database."""

    def __init__(self, error: Exception = None):
        self.error = error or ConnectionError("audit database unreachable")
        self.attempts = 0

    def insert(self, entry: AuditEntry, timeout_seconds: Optional[float] = None) -> None:
        self.attempts += 1
        raise self.error


class BlockingAuditRepository(AuditLogRepository):
    """Blocks inserts until released; records what got through."""

    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Event()
        self.entries: List[AuditEntry] = []

    def insert(self, entry: AuditEntry, timeout_seconds: Optional[float] = None) -> None:
        self.started.set()
        self.release.wait(timeout=10)
        self.entries.append(entry)


class SlowAuditRepository(AuditLogRepository):
    """Takes `delay` seconds per insert and ignores its time budget."""

    def __init__(self, delay: float):
        self.delay = delay
        self.entries: List[AuditEntry] = []
        self.budgets: List[Optional[float]] = []

    def insert(self, entry: AuditEntry, timeout_seconds: Optional[float] = None) -> None:
        self.budgets.append(timeout_seconds)
        time.sleep(self.delay)
        self.entries.append(entry)


def billing_state(
    tenant_id: str,
    tier: Tier = Tier.FREE,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    trial_end: Optional[datetime] = None,
    event_id: Optional[str] = "evt_seed",
    synced_at: Optional[datetime] = FIXED_NOW - timedelta(days=1),
) -> BillingState:
    return BillingState(
        tenant_id=tenant_id,
        tier=tier,
        status=status,
        trial_end=trial_end,
        last_sync_event_id=event_id,
        synced_at=synced_at,
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def policy():
    """The packaged tier policy."""
    return load_tier_policy()


@pytest.fixture
def metrics():
    return EntitlementMetrics()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def wall_clock():
    return FakeWallClock()


@pytest.fixture
def billing_repo():
    return InMemoryBillingStateRepository()


@pytest.fixture
def audit_repo():
    return RecordingAuditRepository()


@pytest.fixture
def cache(monotonic):
    return EntitlementCache(ttl_seconds=300, clock=monotonic)


@pytest.fixture
def store(billing_repo, metrics):
    store = BillingStateStore(billing_repo, read_timeout_seconds=2.0, metrics=metrics)
    yield store
    store.shutdown()


@pytest.fixture
def audit_sink(audit_repo, metrics):
    sink = AuditSink(audit_repo, write_timeout_seconds=5.0, metrics=metrics)
    yield sink
    sink.shutdown()


@pytest.fixture
def engine(policy, store, cache, audit_sink, wall_clock, metrics):
    return EntitlementEngine(
        policy,
        store,
        cache,
        audit_sink=audit_sink,
        clock=wall_clock,
        metrics=metrics,
    )


@pytest.fixture
def sync_handler(store, cache, audit_sink, metrics):
    return BillingSyncHandler(store, cache, audit_sink=audit_sink, metrics=metrics)


@pytest.fixture
def session_factory():
    """SQLite in-memory database with every table created."""
    factory = create_session_factory("sqlite:///:memory:", create_tables=True)
    yield factory
    factory.kw["bind"].dispose()


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# =============================================================================
# Config fixtures
# =============================================================================

@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for YAML config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("tier_policy.yml", {"version": "1", ...})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make
