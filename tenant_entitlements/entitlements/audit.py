"""
Entitlement Audit Sink - best-effort, non-blocking append-only audit trail.

Provides:
- AuditEntry: One shape for entitlement checks and workspace config changes
- AuditOutcome: Outcome values stored in AuditEntry.result
- PIIRedactor: Redacts sensitive metadata before persistence
- AuditSink: Submits entries to a dedicated writer pool and returns at once

Guarantees:
- append() never raises and never waits on the audit store
- At-most-once: a failed, timed-out or overflowing write is logged to the
  fallback logger and dropped
- No ordering across concurrent writers; read the trail as a set of
  timestamped rows, not a per-key sequence

CRITICAL: Audit store health must never affect authorization results or
latency.
"""

import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from threading import BoundedSemaphore, Lock
from typing import Any, Dict, FrozenSet, Optional, Set

from tenant_entitlements.entitlements.errors import AuditWriteTimeoutError
from tenant_entitlements.entitlements.models import EntitlementCheckResult, Tier, utc_now
from tenant_entitlements.monitoring.entitlement_metrics import (
    EntitlementMetrics,
    get_entitlement_metrics,
)
from tenant_entitlements.repositories.audit_log_repo import AuditLogRepository

logger = logging.getLogger(__name__)

# Dedicated audit logger for structured logging
audit_logger = logging.getLogger("entitlements.audit")
fallback_logger = logging.getLogger("audit.fallback")

DEFAULT_WRITE_TIMEOUT_SECONDS = 5.0
DEFAULT_AUDIT_WORKERS = 2
DEFAULT_MAX_PENDING = 10000


class AuditOutcome(str, Enum):
    """Outcome of the audited action."""
    ALLOWED = "allowed"
    DENIED = "denied"
    SUCCESS = "success"
    FAILURE = "failure"


class EntitlementAuditAction(str, Enum):
    ALLOWED = "entitlement.allowed"
    DENIED = "entitlement.denied"


class PIIRedactor:
    """
    Redacts PII fields from audit metadata before persistence.

    Redacted fields are replaced with "[REDACTED]" to maintain structure
    while removing sensitive data.
    """

    REDACTED_FIELDS: FrozenSet[str] = frozenset({
        "email",
        "phone",
        "phone_number",
        "token",
        "access_token",
        "refresh_token",
        "api_key",
        "password",
        "secret",
        "credential",
        "credentials",
        "card_number",
        "bank_account",
    })

    REDACTION_MARKER = "[REDACTED]"

    @classmethod
    def redact(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(data, dict):
            return data
        result = {}
        for key, value in data.items():
            lower_key = str(key).lower()
            if lower_key in cls.REDACTED_FIELDS:
                result[key] = cls._redact_value(lower_key, value)
            elif isinstance(value, dict):
                result[key] = cls.redact(value)
            elif isinstance(value, list):
                result[key] = [cls.redact(v) if isinstance(v, dict) else v for v in value]
            else:
                result[key] = value
        return result

    @classmethod
    def _redact_value(cls, key: str, value: Any) -> str:
        # Partial redaction for email (show domain)
        if key == "email" and isinstance(value, str) and "@" in value:
            return f"***@{value.split('@', 1)[1]}"
        return cls.REDACTION_MARKER


@dataclass(frozen=True)
class AuditEntry:
    """
    Append-only audit record.

    feature, reason, tier and cached are set for entitlement checks and left
    empty (or partly set) for workspace configuration changes.
    """

    tenant_id: str
    actor_id: Optional[str]
    action: str
    result: str
    feature: Optional[str] = None
    reason: Optional[str] = None
    tier: Optional[str] = None
    cached: Optional[bool] = None
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_check(
        cls,
        tenant_id: str,
        actor_id: str,
        result: EntitlementCheckResult,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "AuditEntry":
        return cls(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=(EntitlementAuditAction.ALLOWED if result.enabled else EntitlementAuditAction.DENIED).value,
            result=(AuditOutcome.ALLOWED if result.enabled else AuditOutcome.DENIED).value,
            feature=result.feature,
            reason=result.reason.value if result.reason else None,
            tier=result.tier.value if isinstance(result.tier, Tier) else result.tier,
            cached=result.cached,
            metadata=dict(metadata or {}),
        )

    def to_record(self) -> Dict[str, Any]:
        """Column values for AuditLogRecord, with PII redacted."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "feature": self.feature,
            "result": self.result,
            "reason": self.reason,
            "tier": self.tier,
            "cached": self.cached,
            "timestamp": self.timestamp,
            "event_metadata": PIIRedactor.redact(self.metadata),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["metadata"] = PIIRedactor.redact(self.metadata)
        return data


class AuditSink:
    """
    Non-blocking audit writer.

    append() reserves a slot in a bounded backlog and hands the entry to a
    small writer pool. If the backlog is full the entry is dropped. Each
    entry has write_timeout_seconds from append() to commit: a writer that
    picks up an entry past its deadline abandons it, and the insert gets only
    the remaining budget. A timed-out insert is dropped with cause "timeout".

    Usage:
        sink = AuditSink(SqlAlchemyAuditLogRepository(audit_sessions))
        sink.append(AuditEntry.from_check(tenant_id, actor_id, result))
    """

    def __init__(
        self,
        repository: AuditLogRepository,
        write_timeout_seconds: float = DEFAULT_WRITE_TIMEOUT_SECONDS,
        max_workers: int = DEFAULT_AUDIT_WORKERS,
        max_pending: int = DEFAULT_MAX_PENDING,
        metrics: Optional[EntitlementMetrics] = None,
    ):
        self._repository = repository
        self._write_timeout = write_timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="audit-sink",
        )
        self._slots = BoundedSemaphore(max_pending)
        self._pending: Set[Future] = set()
        self._pending_lock = Lock()
        self._metrics = metrics or get_entitlement_metrics()

        logger.info(
            "Entitlement audit sink initialized",
            extra={
                "max_workers": max_workers,
                "max_pending": max_pending,
                "write_timeout_seconds": write_timeout_seconds,
            }
        )

    def append(self, entry: AuditEntry) -> None:
        """Submit entry for writing. Returns immediately; never raises."""
        try:
            if not self._slots.acquire(blocking=False):
                self._drop(entry, "backlog_full")
                return
            try:
                future = self._executor.submit(self._write, entry, time.monotonic())
            except Exception:
                self._slots.release()
                raise
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._on_done)
        except Exception as e:
            self._drop(entry, f"submit_failed:{type(e).__name__}")

    def _on_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        self._slots.release()

    def _write(self, entry: AuditEntry, enqueued_at: float) -> None:
        # The budget runs from append(); queue wait counts against it.
        deadline = enqueued_at + self._write_timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            self._drop(entry, "timeout")
            return

        try:
            self._repository.insert(entry, timeout_seconds=remaining)
        except AuditWriteTimeoutError as e:
            self._drop(entry, "timeout", error=str(e))
            return
        except Exception as e:
            self._drop(entry, f"write_failed:{type(e).__name__}", error=str(e))
            return

        overrun = time.monotonic() - deadline
        if overrun > 0:
            # The repository ignored its budget; the entry is abandoned.
            self._drop(entry, "timeout", error=f"insert finished {overrun:.3f}s past deadline")
            return

        self._metrics.record_audit_written(entry.tenant_id, entry.action)
        audit_logger.info(
            entry.action,
            extra={"event_type": entry.action, "audit_data": entry.to_dict()},
        )

    def _drop(self, entry: AuditEntry, cause: str, error: Optional[str] = None) -> None:
        """Record that entry will not be persisted."""
        try:
            fallback_logger.error(
                "Audit entry dropped",
                extra={"cause": cause, "error": error, "audit_entry": entry.to_dict()},
            )
            self._metrics.record_audit_dropped(entry.tenant_id, cause)
        except Exception:
            # Logging itself failed; the entry is already lost and the
            # caller must still not see an error.
            pass

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for submitted writes to finish. True if none remain pending."""
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting entries; optionally wait for queued writes."""
        self._executor.shutdown(wait=wait)
