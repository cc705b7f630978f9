"""Access policy mapping billing state and a required tier to a denial reason."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .catalog import highest_tier, is_tier_sufficient
from .models import BillingState, DenialReason, SubscriptionStatus, SubscriptionTier


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of evaluating one billing state against one required tier."""

    reason: Optional[DenialReason]
    tier: SubscriptionTier

    @property
    def enabled(self) -> bool:
        return self.reason is None


def trial_is_active(billing: BillingState, now: datetime) -> bool:
    """Return whether a trialing workspace is still inside its trial window.

    A trial without an end date is never active and grants no uplift.
    """

    if billing.status != SubscriptionStatus.TRIALING:
        return False
    return billing.trial_end is not None and billing.trial_end > now


def evaluate_access(
    billing: BillingState,
    required_tier: SubscriptionTier,
    *,
    now: datetime,
    trial_tier: SubscriptionTier,
) -> AccessDecision:
    """Evaluate access for ``required_tier``.

    Subscription health is checked before plan sufficiency so that an
    inactive subscription always reports ``SUBSCRIPTION_INACTIVE`` even when
    the stored tier would otherwise be enough.
    """

    base_tier = billing.tier

    if billing.is_inactive:
        return AccessDecision(reason=DenialReason.SUBSCRIPTION_INACTIVE, tier=base_tier)

    if billing.status == SubscriptionStatus.TRIALING and billing.trial_end is not None:
        if trial_is_active(billing, now):
            granted = highest_tier(base_tier, trial_tier)
            return _tier_check(granted, required_tier)
        if not is_tier_sufficient(base_tier, required_tier):
            return AccessDecision(reason=DenialReason.GRACE_PERIOD_EXPIRED, tier=base_tier)

    return _tier_check(base_tier, required_tier)


def determine_denial_reason(
    billing: BillingState,
    required_tier: SubscriptionTier,
    *,
    now: datetime,
    trial_tier: SubscriptionTier,
) -> Optional[DenialReason]:
    """Return the denial reason for ``required_tier`` or ``None`` when allowed."""

    return evaluate_access(billing, required_tier, now=now, trial_tier=trial_tier).reason


def _tier_check(tier: SubscriptionTier, required_tier: SubscriptionTier) -> AccessDecision:
    if not is_tier_sufficient(tier, required_tier):
        return AccessDecision(reason=DenialReason.TIER_INSUFFICIENT, tier=tier)
    return AccessDecision(reason=None, tier=tier)
