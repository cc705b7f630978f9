"""Entitlements domain models and services."""

from .audit import (
    AuditPublisher,
    AuditSink,
    BackgroundAuditDispatcher,
    EntitlementAuditEvent,
    LoggingAuditSink,
    NullAuditPublisher,
)
from .cache import CacheEntry, CacheStatistics, EntitlementCache, InMemoryEntitlementCache
from .catalog import (
    FEATURE_CATALOG,
    TIER_CATALOG,
    FeatureDefinition,
    TierDefinition,
    UnknownFeatureError,
    coerce_tier,
    features_available_to,
    get_feature_definition,
    get_minimum_tier_for,
    get_tier_definition,
    is_tier_sufficient,
    is_valid_feature,
    tier_rank,
)
from .exceptions import (
    BillingStateUnavailableError,
    EntitlementResolutionError,
    ResolutionCancelledError,
)
from .models import (
    BillingState,
    DenialReason,
    EntitlementCheckResult,
    SubscriptionStatus,
    SubscriptionTier,
)
from .policy import AccessDecision, determine_denial_reason, evaluate_access
from .service import BillingStateStore, EntitlementService

__all__ = [
    "FEATURE_CATALOG",
    "TIER_CATALOG",
    "AccessDecision",
    "AuditPublisher",
    "AuditSink",
    "BackgroundAuditDispatcher",
    "BillingState",
    "BillingStateStore",
    "BillingStateUnavailableError",
    "CacheEntry",
    "CacheStatistics",
    "DenialReason",
    "EntitlementAuditEvent",
    "EntitlementCache",
    "EntitlementCheckResult",
    "EntitlementResolutionError",
    "EntitlementService",
    "FeatureDefinition",
    "InMemoryEntitlementCache",
    "LoggingAuditSink",
    "NullAuditPublisher",
    "ResolutionCancelledError",
    "SubscriptionStatus",
    "SubscriptionTier",
    "TierDefinition",
    "UnknownFeatureError",
    "coerce_tier",
    "determine_denial_reason",
    "evaluate_access",
    "features_available_to",
    "get_feature_definition",
    "get_minimum_tier_for",
    "get_tier_definition",
    "is_tier_sufficient",
    "is_valid_feature",
    "tier_rank",
]
