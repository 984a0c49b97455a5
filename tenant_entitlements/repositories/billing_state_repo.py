"""
Billing state repository.

Supports the two operations the billing store needs: read by tenant id and
"upsert only if newer".
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from tenant_entitlements.entitlements.models import BillingState
from tenant_entitlements.models.billing_state import BillingStateRecord

logger = logging.getLogger(__name__)


class BillingStateRepository(ABC):
    """Abstract persistence for BillingState rows."""

    @abstractmethod
    def fetch(self, tenant_id: str) -> Optional[BillingState]:
        """Return the stored state, or None if the tenant has no record."""
        pass

    @abstractmethod
    def upsert_if_newer(self, state: BillingState) -> bool:
        """
        Persist state unless the stored row is the same event or newer.

        Returns True if the row was written.
        """
        pass


class SqlAlchemyBillingStateRepository(BillingStateRepository):
    """BillingStateRepository on a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def fetch(self, tenant_id: str) -> Optional[BillingState]:
        session: Session = self._session_factory()
        try:
            record = session.get(BillingStateRecord, tenant_id)
            return record.to_domain() if record else None
        finally:
            session.close()

    def upsert_if_newer(self, state: BillingState) -> bool:
        try:
            return self._upsert_once(state)
        except IntegrityError:
            # Concurrent first insert for the same tenant won the race;
            # retry against the row it created.
            logger.info(
                "Concurrent billing state insert, retrying as update",
                extra={"tenant_id": state.tenant_id, "event_id": state.last_sync_event_id},
            )
            return self._upsert_once(state)

    def _upsert_once(self, state: BillingState) -> bool:
        session: Session = self._session_factory()
        try:
            record = (
                session.query(BillingStateRecord)
                .filter(BillingStateRecord.tenant_id == state.tenant_id)
                .with_for_update()
                .first()
            )

            if record is not None and not state.is_newer_than(record.to_domain()):
                session.rollback()
                return False

            if record is None:
                session.add(BillingStateRecord.from_domain(state))
            else:
                record.apply(state)

            session.commit()
            return True
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
