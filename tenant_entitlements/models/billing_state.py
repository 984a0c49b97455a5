"""
BillingStateRecord - persisted billing snapshot per tenant.

One row per tenant. Rows are superseded by newer sync events and never
deleted by application code.
"""

from sqlalchemy import Column, String, DateTime, Index

from tenant_entitlements.db_base import Base
from tenant_entitlements.entitlements.models import (
    BillingState,
    SubscriptionStatus,
    Tier,
    as_utc,
)
from tenant_entitlements.models.base import TimestampMixin


class BillingStateRecord(Base, TimestampMixin):
    """Billing state as last synced from the payment provider."""

    __tablename__ = "billing_state"

    tenant_id = Column(
        String(255),
        primary_key=True,
        comment="Workspace (tenant) identifier"
    )
    tier = Column(String(32), nullable=False, default=Tier.FREE.value)
    status = Column(String(32), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    last_sync_event_id = Column(
        String(255),
        nullable=True,
        comment="Provider event id of the last applied sync"
    )
    synced_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Provider timestamp of the last applied sync (orders events)"
    )
    provider_customer_id = Column(String(255), nullable=True, index=True)
    provider_subscription_id = Column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_billing_state_synced_at", "synced_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<BillingStateRecord(tenant_id={self.tenant_id}, tier={self.tier}, "
            f"status={self.status}, last_sync_event_id={self.last_sync_event_id})>"
        )

    def to_domain(self) -> BillingState:
        """Convert to domain value object."""
        return BillingState(
            tenant_id=self.tenant_id,
            tier=Tier.parse(self.tier),
            status=SubscriptionStatus(self.status),
            current_period_start=as_utc(self.current_period_start),
            current_period_end=as_utc(self.current_period_end),
            trial_end=as_utc(self.trial_end),
            last_sync_event_id=self.last_sync_event_id,
            synced_at=as_utc(self.synced_at),
            provider_customer_id=self.provider_customer_id,
            provider_subscription_id=self.provider_subscription_id,
        )

    def apply(self, state: BillingState) -> None:
        """Overwrite this row with state."""
        self.tier = state.tier.value
        self.status = state.status.value
        self.current_period_start = state.current_period_start
        self.current_period_end = state.current_period_end
        self.trial_end = state.trial_end
        self.last_sync_event_id = state.last_sync_event_id
        self.synced_at = state.synced_at
        self.provider_customer_id = state.provider_customer_id
        self.provider_subscription_id = state.provider_subscription_id

    @classmethod
    def from_domain(cls, state: BillingState) -> "BillingStateRecord":
        record = cls(tenant_id=state.tenant_id)
        record.apply(state)
        return record
