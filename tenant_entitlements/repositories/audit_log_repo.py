"""
Audit log repository.

Insert is the only write this subsystem ever performs on the audit trail.
Reads serve the workspace audit views: filtered, paged listings and a
per-tenant summary over a recent window.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from tenant_entitlements.entitlements.errors import AuditWriteTimeoutError
from tenant_entitlements.entitlements.models import utc_now
from tenant_entitlements.models.audit_log import AuditLogRecord

# SQLSTATE for query_canceled (statement_timeout)
_QUERY_CANCELED = "57014"

DEFAULT_SUMMARY_DAYS = 30


def _is_statement_timeout(error: OperationalError) -> bool:
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code == _QUERY_CANCELED


class AuditLogRepository(ABC):
    """Abstract append-only persistence for audit entries."""

    @abstractmethod
    def insert(self, entry, timeout_seconds: Optional[float] = None) -> None:
        """
        Persist one AuditEntry. Raises on failure.

        When timeout_seconds is given, an insert that cannot commit within it
        raises AuditWriteTimeoutError and leaves nothing behind.
        """
        pass


@dataclass(frozen=True)
class AuditSummary:
    """Counts over a tenant's recent audit entries."""
    tenant_id: str
    since: datetime
    total: int = 0
    by_action: Dict[str, int] = field(default_factory=dict)
    by_result: Dict[str, int] = field(default_factory=dict)
    denied_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "since": self.since.isoformat(),
            "total": self.total,
            "byAction": dict(self.by_action),
            "byStatus": dict(self.by_result),
            "deniedCount": self.denied_count,
        }


class SqlAlchemyAuditLogRepository(AuditLogRepository):
    """AuditLogRepository on a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def insert(self, entry, timeout_seconds: Optional[float] = None) -> None:
        deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        session: Session = self._session_factory()
        try:
            session.add(AuditLogRecord(**entry.to_record()))
            session.flush()
            if deadline is not None and time.monotonic() > deadline:
                raise AuditWriteTimeoutError(entry.id, timeout_seconds)
            session.commit()
        except PoolTimeoutError as e:
            session.rollback()
            raise AuditWriteTimeoutError(entry.id, timeout_seconds or 0.0) from e
        except OperationalError as e:
            session.rollback()
            if _is_statement_timeout(e):
                raise AuditWriteTimeoutError(entry.id, timeout_seconds or 0.0) from e
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list_for_tenant(
        self,
        tenant_id: str,
        feature: Optional[str] = None,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogRecord]:
        """
        Read back a tenant's entries, newest first.

        since is inclusive and until is exclusive.
        """
        session: Session = self._session_factory()
        try:
            query = session.query(AuditLogRecord).filter(AuditLogRecord.tenant_id == tenant_id)
            if feature is not None:
                query = query.filter(AuditLogRecord.feature == feature)
            if action is not None:
                query = query.filter(AuditLogRecord.action == action)
            if actor_id is not None:
                query = query.filter(AuditLogRecord.actor_id == actor_id)
            if since is not None:
                query = query.filter(AuditLogRecord.timestamp >= since)
            if until is not None:
                query = query.filter(AuditLogRecord.timestamp < until)
            rows = (
                query.order_by(AuditLogRecord.timestamp.desc(), AuditLogRecord.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
            session.expunge_all()
            return rows
        finally:
            session.close()

    def summarize(
        self,
        tenant_id: str,
        days: int = DEFAULT_SUMMARY_DAYS,
        now: Optional[datetime] = None,
    ) -> AuditSummary:
        """Count a tenant's entries over the last `days` days by action and result."""
        since = (now or utc_now()) - timedelta(days=days)
        session: Session = self._session_factory()
        try:
            rows = (
                session.query(
                    AuditLogRecord.action,
                    AuditLogRecord.result,
                    func.count(AuditLogRecord.id),
                )
                .filter(AuditLogRecord.tenant_id == tenant_id)
                .filter(AuditLogRecord.timestamp >= since)
                .group_by(AuditLogRecord.action, AuditLogRecord.result)
                .all()
            )
        finally:
            session.close()

        by_action: Dict[str, int] = {}
        by_result: Dict[str, int] = {}
        for action, result, count in rows:
            by_action[action] = by_action.get(action, 0) + count
            by_result[result] = by_result.get(result, 0) + count

        return AuditSummary(
            tenant_id=tenant_id,
            since=since,
            total=sum(by_action.values()),
            by_action=by_action,
            by_result=by_result,
            denied_count=by_result.get("denied", 0),
        )
