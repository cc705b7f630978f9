"""Domain models for billing provider synchronization."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import BillingState, SubscriptionStatus, SubscriptionTier


class BillingSyncEventType(str, Enum):
    """Outcomes recorded when provider state is written locally."""

    SUBSCRIPTION_SYNCED = "subscription.synced"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SYNC_FAILED = "subscription.sync_failed"


class ProviderSubscriptionEvent(BaseModel):
    """Normalized subscription lifecycle event from the billing provider.

    Signature verification and provider payload parsing happen upstream; this
    is the authoritative state for every field it carries.
    """

    workspace_id: str
    tier: SubscriptionTier
    status: SubscriptionStatus
    trial_end: Optional[datetime] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    event_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def to_billing_state(self, synced_at: datetime) -> BillingState:
        return BillingState(
            workspace_id=self.workspace_id,
            tier=self.tier,
            status=self.status,
            trial_end=self.trial_end,
            customer_id=self.customer_id,
            subscription_id=self.subscription_id,
            current_period_start=self.current_period_start,
            current_period_end=self.current_period_end,
            last_event_id=self.event_id,
            synced_at=synced_at,
        )


class BillingSyncRecord(BaseModel):
    """Structured log entry describing one billing state write."""

    event_type: BillingSyncEventType
    workspace_id: str
    tier: SubscriptionTier
    status: SubscriptionStatus
    event_id: Optional[str] = None
    invalidated_entries: int = 0
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)
