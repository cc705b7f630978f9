"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

from typing import Dict, Optional

from ..entitlements import (
    DenialReason,
    EntitlementCheckResult,
    EntitlementResolutionError,
    EntitlementService,
    get_feature_definition,
    get_tier_definition,
    is_valid_feature,
)
from .exceptions import FeatureGateError

_REMEDIATION: Dict[DenialReason, str] = {
    DenialReason.TIER_INSUFFICIENT: "upgrade_plan",
    DenialReason.GRACE_PERIOD_EXPIRED: "upgrade_plan",
    DenialReason.SUBSCRIPTION_INACTIVE: "reactivate_billing",
    DenialReason.FEATURE_UNAVAILABLE: "contact_support",
}

_MESSAGES: Dict[DenialReason, str] = {
    DenialReason.TIER_INSUFFICIENT: "Your plan does not include this feature.",
    DenialReason.GRACE_PERIOD_EXPIRED: "Your trial has ended. Upgrade to keep using this feature.",
    DenialReason.SUBSCRIPTION_INACTIVE: "Your subscription is inactive. Update billing to restore access.",
    DenialReason.FEATURE_UNAVAILABLE: "This feature is not available.",
}


def remediation_for(reason: DenialReason) -> str:
    return _REMEDIATION[reason]


def require_entitlement(result: EntitlementCheckResult, *, message: Optional[str] = None) -> None:
    """Raise :class:`FeatureGateError` unless ``result`` is enabled.

    Parameters
    ----------
    result:
        Resolved entitlement as returned by :class:`EntitlementService`.
    message:
        Optional human-friendly message overriding the default for the
        denial reason.
    """

    if result.enabled:
        return

    reason = result.reason or DenialReason.FEATURE_UNAVAILABLE
    detail: Dict[str, object] = {"tier": result.tier.value}
    if is_valid_feature(result.feature):
        required = get_feature_definition(result.feature).minimum_tier
        detail["required_tier"] = required.value
        detail["required_tier_name"] = get_tier_definition(required).display_name

    raise FeatureGateError(
        code=reason.value.lower(),
        message=message or _MESSAGES[reason],
        feature=result.feature,
        remediation=remediation_for(reason),
        detail=detail,
    )


def enforce_feature(
    service: EntitlementService,
    workspace_id: str,
    feature: str,
    actor_id: Optional[str] = None,
) -> EntitlementCheckResult:
    """Resolve and require ``feature`` in one step.

    Resolution failures become a 503 gate error rather than a denial.
    """

    try:
        result = service.resolve(workspace_id, feature, actor_id)
    except EntitlementResolutionError as exc:
        raise FeatureGateError.undetermined(feature, exc) from exc
    require_entitlement(result)
    return result
