"""Billing domain package synchronizing provider state into billing records."""

from ..entitlements.models import BillingState, SubscriptionStatus, SubscriptionTier
from .models import BillingSyncEventType, BillingSyncRecord, ProviderSubscriptionEvent
from .service import (
    BillingSyncEventLogger,
    BillingSyncHandler,
    EntitlementInvalidator,
    LoggingBillingSyncEventLogger,
)

__all__ = [
    "BillingState",
    "BillingSyncEventLogger",
    "BillingSyncEventType",
    "BillingSyncHandler",
    "BillingSyncRecord",
    "EntitlementInvalidator",
    "LoggingBillingSyncEventLogger",
    "ProviderSubscriptionEvent",
    "SubscriptionStatus",
    "SubscriptionTier",
]
