"""Applies billing provider lifecycle events to local billing state."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from ..entitlements.models import BillingState, SubscriptionStatus, SubscriptionTier
from ..entitlements.service import BillingStateStore
from .models import BillingSyncEventType, BillingSyncRecord, ProviderSubscriptionEvent

logger = logging.getLogger("billing")


class EntitlementInvalidator(Protocol):
    """Invalidates entitlement caches affected by billing changes."""

    def invalidate_workspace(self, workspace_id: str) -> int:
        ...


class BillingSyncEventLogger(Protocol):
    """Captures structured billing sync events."""

    def log(self, record: BillingSyncRecord) -> None:
        ...


class LoggingBillingSyncEventLogger:
    """Forwards billing sync records to the application logger."""

    def log(self, record: BillingSyncRecord) -> None:
        logger.info(
            "Billing event %s workspace=%s tier=%s status=%s event=%s invalidated=%s",
            record.event_type.value,
            record.workspace_id,
            record.tier.value,
            record.status.value,
            record.event_id,
            record.invalidated_entries,
            extra={"billing_event": record.event_type.value, "workspace_id": record.workspace_id},
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BillingSyncHandler:
    """Sole writer of workspace billing state.

    Every write is followed by invalidation of the workspace's cached
    entitlements, whether or not the tier or status changed.
    """

    store: BillingStateStore
    entitlement_invalidator: EntitlementInvalidator
    event_logger: BillingSyncEventLogger = field(default_factory=LoggingBillingSyncEventLogger)
    clock: Callable[[], datetime] = _utcnow

    def sync_from_provider_event(self, workspace_id: str, new_state: BillingState) -> BillingState:
        """Upsert ``new_state`` for ``workspace_id`` (last write wins) and invalidate."""

        if new_state.workspace_id != workspace_id:
            new_state = new_state.model_copy(update={"workspace_id": workspace_id})

        try:
            persisted = self.store.upsert_billing_state(workspace_id, new_state)
        except Exception:
            logger.exception("Billing state upsert failed for workspace %s", workspace_id)
            self._invalidate(workspace_id)
            self._log(BillingSyncEventType.SYNC_FAILED, new_state, invalidated=0)
            raise

        invalidated = self._invalidate(workspace_id)
        event_type = (
            BillingSyncEventType.SUBSCRIPTION_CANCELLED
            if persisted.status == SubscriptionStatus.CANCELLED
            else BillingSyncEventType.SUBSCRIPTION_SYNCED
        )
        self._log(event_type, persisted, invalidated=invalidated)
        return persisted

    def handle_subscription_event(self, event: ProviderSubscriptionEvent) -> BillingState:
        state = event.to_billing_state(synced_at=self.clock())
        return self.sync_from_provider_event(event.workspace_id, state)

    def handle_subscription_deleted(
        self,
        workspace_id: str,
        *,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> BillingState:
        """Record a deleted subscription: tier drops to free and status is cancelled."""

        state = BillingState(
            workspace_id=workspace_id,
            tier=SubscriptionTier.FREE,
            status=SubscriptionStatus.CANCELLED,
            customer_id=customer_id,
            subscription_id=subscription_id,
            last_event_id=event_id,
            synced_at=self.clock(),
        )
        return self.sync_from_provider_event(workspace_id, state)

    def _invalidate(self, workspace_id: str) -> int:
        try:
            return self.entitlement_invalidator.invalidate_workspace(workspace_id)
        except Exception:
            logger.exception("Entitlement invalidation failed for workspace %s", workspace_id)
            return 0

    def _log(self, event_type: BillingSyncEventType, state: BillingState, *, invalidated: int) -> None:
        try:
            self.event_logger.log(
                BillingSyncRecord(
                    event_type=event_type,
                    workspace_id=state.workspace_id,
                    tier=state.tier,
                    status=state.status,
                    event_id=state.last_event_id,
                    invalidated_entries=invalidated,
                )
            )
        except Exception:
            logger.warning("Billing sync event logging failed", exc_info=True)


__all__ = [
    "BillingSyncEventLogger",
    "BillingSyncHandler",
    "EntitlementInvalidator",
    "LoggingBillingSyncEventLogger",
]
