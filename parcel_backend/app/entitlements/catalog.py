"""Static catalog definitions for subscription tiers and gated features."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from .models import DenialReason, SubscriptionTier


class UnknownFeatureError(KeyError):
    """Raised when a feature identifier is not registered in the catalog."""

    code = DenialReason.FEATURE_UNAVAILABLE

    def __init__(self, feature: str) -> None:
        super().__init__(feature)
        self.feature = feature

    def __str__(self) -> str:
        return f"Unknown feature: {self.feature}"


@dataclass(frozen=True)
class TierDefinition:
    """Describes a subscription tier and its position in the tier order."""

    key: SubscriptionTier
    rank: int
    display_name: str
    description: str = ""


@dataclass(frozen=True)
class FeatureDefinition:
    """Describes a gated feature and the minimum tier that unlocks it."""

    key: str
    minimum_tier: SubscriptionTier
    description: str = ""


TIER_CATALOG: Dict[SubscriptionTier, TierDefinition] = {
    SubscriptionTier.FREE: TierDefinition(
        key=SubscriptionTier.FREE,
        rank=0,
        display_name="Free",
        description="Basic parcel discovery and reporting",
    ),
    SubscriptionTier.PRO: TierDefinition(
        key=SubscriptionTier.PRO,
        rank=1,
        display_name="Pro",
        description="Branded reports and saved parcels",
    ),
    SubscriptionTier.PRO_PLUS: TierDefinition(
        key=SubscriptionTier.PRO_PLUS,
        rank=2,
        display_name="Pro Plus",
        description="Contact management and collaboration",
    ),
    SubscriptionTier.PORTFOLIO: TierDefinition(
        key=SubscriptionTier.PORTFOLIO,
        rank=3,
        display_name="Portfolio",
        description="Data export and advanced analytics",
    ),
    SubscriptionTier.ENTERPRISE: TierDefinition(
        key=SubscriptionTier.ENTERPRISE,
        rank=4,
        display_name="Enterprise",
        description="Custom features and support",
    ),
}


def _feature(key: str, minimum_tier: SubscriptionTier, description: str) -> FeatureDefinition:
    return FeatureDefinition(key=key, minimum_tier=minimum_tier, description=description)


FEATURE_CATALOG: Dict[str, FeatureDefinition] = {
    definition.key: definition
    for definition in (
        _feature("ccp-01:parcel-discovery", SubscriptionTier.FREE, "Search and discover parcels by address or location"),
        _feature("ccp-02:parcel-context", SubscriptionTier.FREE, "View detailed parcel information and context"),
        _feature("ccp-03:report-generation", SubscriptionTier.FREE, "Generate parcel reports"),
        _feature("ccp-04:report-viewing", SubscriptionTier.FREE, "View and access saved reports"),
        _feature("ccp-05:billing", SubscriptionTier.FREE, "Manage billing and subscription"),
        _feature("ccp-06:branded-reports", SubscriptionTier.PRO, "Create and share branded reports"),
        _feature("ccp-07:audit-logging", SubscriptionTier.FREE, "Access audit logs and compliance records"),
        _feature("ccp-08:saved-parcels", SubscriptionTier.PRO, "Save and bookmark parcels for later"),
        _feature("ccp-09:contact-upload", SubscriptionTier.PRO_PLUS, "Import contacts via CSV"),
        _feature("ccp-10:collaboration", SubscriptionTier.PRO_PLUS, "Collaborate with team members"),
        _feature("ccp-11:events", SubscriptionTier.PRO_PLUS, "Track and manage events"),
        _feature("ccp-12:sharing", SubscriptionTier.FREE, "Share reports and parcels with others"),
        _feature("ccp-14:premium-features", SubscriptionTier.PRO, "Access premium features and tools"),
        _feature("ccp-15:export", SubscriptionTier.PORTFOLIO, "Export data in various formats"),
    )
}


def get_tier_definition(tier: SubscriptionTier) -> TierDefinition:
    """Return a tier definition, raising if unsupported."""

    try:
        return TIER_CATALOG[tier]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown tier: {tier}") from exc


def tier_rank(tier: SubscriptionTier) -> int:
    return get_tier_definition(tier).rank


def coerce_tier(value: object) -> SubscriptionTier:
    """Parse a tier from its string value, raising ``ValueError`` otherwise."""

    if isinstance(value, SubscriptionTier):
        return value
    try:
        return SubscriptionTier(str(value))
    except ValueError as exc:
        raise ValueError(f"Unknown subscription tier: {value!r}") from exc


def is_tier_sufficient(actual: SubscriptionTier, required: SubscriptionTier) -> bool:
    """Return whether ``actual`` ranks at or above ``required``."""

    return tier_rank(actual) >= tier_rank(required)


def highest_tier(*tiers: SubscriptionTier) -> SubscriptionTier:
    return max(tiers, key=tier_rank)


def is_valid_feature(feature: object) -> bool:
    return isinstance(feature, str) and feature in FEATURE_CATALOG


def get_feature_definition(feature: str) -> FeatureDefinition:
    """Return a feature definition, raising :class:`UnknownFeatureError` if unregistered."""

    if not is_valid_feature(feature):
        raise UnknownFeatureError(str(feature))
    return FEATURE_CATALOG[feature]


def get_minimum_tier_for(feature: str) -> SubscriptionTier:
    return get_feature_definition(feature).minimum_tier


def features_available_to(tier: SubscriptionTier) -> List[str]:
    """List the catalog features a tier unlocks, in catalog order."""

    return [
        definition.key
        for definition in FEATURE_CATALOG.values()
        if is_tier_sufficient(tier, definition.minimum_tier)
    ]
