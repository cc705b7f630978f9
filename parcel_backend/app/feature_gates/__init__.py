"""Feature gating utilities coordinating entitlement enforcement."""
from .context import WorkspaceEntitlements
from .enforcement import enforce_feature, remediation_for, require_entitlement
from .exceptions import FeatureGateError

__all__ = [
    "FeatureGateError",
    "WorkspaceEntitlements",
    "enforce_feature",
    "remediation_for",
    "require_entitlement",
]
