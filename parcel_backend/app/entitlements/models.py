"""Domain models for workspace entitlements and billing state."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubscriptionTier(str, Enum):
    """Canonical identifiers for subscription tiers.

    Ordering lives in :mod:`.catalog`; never compare tiers by name.
    """

    FREE = "free"
    PRO = "pro"
    PRO_PLUS = "pro_plus"
    PORTFOLIO = "portfolio"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Lifecycle state reported by the billing provider."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELLED = "cancelled"


INACTIVE_STATUSES = frozenset(
    {SubscriptionStatus.CANCELLED, SubscriptionStatus.PAST_DUE, SubscriptionStatus.UNPAID}
)


class DenialReason(str, Enum):
    """Why an entitlement check came back disabled."""

    FEATURE_UNAVAILABLE = "FEATURE_UNAVAILABLE"
    TIER_INSUFFICIENT = "TIER_INSUFFICIENT"
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    GRACE_PERIOD_EXPIRED = "GRACE_PERIOD_EXPIRED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BillingState(BaseModel):
    """Per-workspace billing record synchronized from the billing provider.

    ``customer_id``, ``subscription_id`` and ``last_event_id`` are kept for
    reconciliation only and never take part in access decisions.
    """

    workspace_id: str
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    trial_end: Optional[datetime] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    last_event_id: Optional[str] = None
    synced_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @field_validator("trial_end", "current_period_start", "current_period_end", "synced_at")
    @classmethod
    def _normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @classmethod
    def default_for(cls, workspace_id: str) -> "BillingState":
        """Implicit state for workspaces that have never been billed."""

        return cls(
            workspace_id=workspace_id,
            tier=SubscriptionTier.FREE,
            status=SubscriptionStatus.ACTIVE,
        )

    @property
    def is_inactive(self) -> bool:
        return self.status in INACTIVE_STATUSES


class EntitlementCheckResult(BaseModel):
    """Resolved entitlement for one (workspace, feature) pair.

    This is the contract returned to callers; ``model_dump(by_alias=True,
    mode="json")`` produces the camelCase wire shape.
    """

    feature: str
    enabled: bool
    tier: SubscriptionTier
    reason: Optional[DenialReason] = None
    cached: bool = False
    resolved_at: datetime = Field(default_factory=_utcnow, alias="resolvedAt")
    cache_ttl_remaining: Optional[int] = Field(default=None, alias="cacheTtlRemaining")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("resolved_at")
    @classmethod
    def _normalize_resolved_at(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
