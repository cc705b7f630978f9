"""Service responsible for resolving and caching workspace entitlements."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Event
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from .audit import AuditPublisher, EntitlementAuditEvent, NullAuditPublisher
from .cache import CacheEntry, EntitlementCache
from .catalog import FEATURE_CATALOG, get_minimum_tier_for, is_valid_feature
from .exceptions import BillingStateUnavailableError, ResolutionCancelledError
from .models import BillingState, DenialReason, EntitlementCheckResult, SubscriptionTier
from .policy import evaluate_access

logger = logging.getLogger("entitlements")

DEFAULT_CACHE_TTL_SECONDS = 300


class BillingStateStore(Protocol):
    """Durable owner of workspace billing state."""

    def get_billing_state(
        self,
        workspace_id: str,
        *,
        cancel: Optional[Event] = None,
    ) -> Optional[BillingState]:
        ...

    def upsert_billing_state(self, workspace_id: str, state: BillingState) -> BillingState:
        ...


class EntitlementService:
    """Coordinates feature validation, billing lookups, caching, and auditing."""

    def __init__(
        self,
        billing_store: BillingStateStore,
        cache: EntitlementCache,
        *,
        audit_publisher: Optional[AuditPublisher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        trial_tier: SubscriptionTier = SubscriptionTier.PRO,
    ) -> None:
        self._billing_store = billing_store
        self._cache = cache
        self._audit = audit_publisher or NullAuditPublisher()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl_seconds = max(int(ttl_seconds), 0)
        self._trial_tier = trial_tier

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @property
    def trial_tier(self) -> SubscriptionTier:
        return self._trial_tier

    def resolve(
        self,
        workspace_id: str,
        feature: str,
        actor_id: Optional[str] = None,
        *,
        cancel: Optional[Event] = None,
    ) -> EntitlementCheckResult:
        """Return the entitlement for ``feature`` in ``workspace_id``."""

        if not is_valid_feature(feature):
            return self._feature_unavailable(workspace_id, feature)

        cached = self._cached_result(workspace_id, feature)
        if cached is not None:
            return cached

        billing = self._fetch_billing_state(workspace_id, cancel)
        return self._resolve_from_billing(workspace_id, feature, billing, actor_id)

    def resolve_many(
        self,
        workspace_id: str,
        features: Iterable[str],
        actor_id: Optional[str] = None,
        *,
        cancel: Optional[Event] = None,
    ) -> Dict[str, EntitlementCheckResult]:
        """Resolve several features with at most one billing state fetch."""

        results: Dict[str, EntitlementCheckResult] = {}
        misses: List[str] = []
        for feature in features:
            if feature in results:
                continue
            if not is_valid_feature(feature):
                results[feature] = self._feature_unavailable(workspace_id, feature)
                continue
            cached = self._cached_result(workspace_id, feature)
            if cached is not None:
                results[feature] = cached
            else:
                misses.append(feature)
                results[feature] = None  # type: ignore[assignment]

        if misses:
            billing = self._fetch_billing_state(workspace_id, cancel)
            for feature in misses:
                results[feature] = self._resolve_from_billing(workspace_id, feature, billing, actor_id)

        logger.debug(
            "Resolved %s entitlements for workspace %s (%s from billing state)",
            len(results),
            workspace_id,
            len(misses),
        )
        return results

    def get_enabled_features(
        self,
        workspace_id: str,
        actor_id: Optional[str] = None,
        *,
        cancel: Optional[Event] = None,
    ) -> List[str]:
        """List every catalog feature currently enabled for the workspace."""

        results = self.resolve_many(workspace_id, FEATURE_CATALOG.keys(), actor_id, cancel=cancel)
        return [feature for feature, result in results.items() if result.enabled]

    def invalidate_workspace(self, workspace_id: str) -> int:
        try:
            removed = self._cache.invalidate_workspace(workspace_id)
        except Exception:
            logger.exception("Failed to invalidate entitlement cache for workspace %s", workspace_id)
            return 0
        logger.info("Invalidated %s entitlement cache entries for workspace %s", removed, workspace_id)
        return removed

    def clear_cache(self) -> int:
        removed = self._cache.clear()
        logger.info("Cleared %s entitlement cache entries", removed)
        return removed

    def get_cache_statistics(self) -> Dict[str, int]:
        stats = self._cache.stats()
        return {
            "cacheSize": stats.size,
            "validEntries": stats.valid_entries,
            "expiredEntries": stats.expired_entries,
            "ttlSeconds": self._ttl_seconds,
        }

    def _feature_unavailable(self, workspace_id: str, feature: str) -> EntitlementCheckResult:
        logger.warning("Entitlement check for unknown feature %r in workspace %s", feature, workspace_id)
        return EntitlementCheckResult(
            feature=str(feature),
            enabled=False,
            tier=SubscriptionTier.FREE,
            reason=DenialReason.FEATURE_UNAVAILABLE,
            cached=False,
            resolved_at=self._clock(),
            cache_ttl_remaining=None,
        )

    def _cached_result(self, workspace_id: str, feature: str) -> Optional[EntitlementCheckResult]:
        try:
            entry: Optional[CacheEntry] = self._cache.get(workspace_id, feature)
        except Exception:
            logger.exception("Entitlement cache read failed for workspace %s", workspace_id)
            return None
        if entry is None:
            return None
        return entry.result.model_copy(
            update={"cached": True, "cache_ttl_remaining": entry.ttl_remaining(self._clock())}
        )

    def _fetch_billing_state(self, workspace_id: str, cancel: Optional[Event]) -> BillingState:
        if cancel is not None and cancel.is_set():
            raise ResolutionCancelledError(workspace_id, "Entitlement resolution cancelled")
        try:
            billing = self._billing_store.get_billing_state(workspace_id, cancel=cancel)
        except ResolutionCancelledError:
            raise
        except Exception as exc:
            logger.exception("Billing state lookup failed for workspace %s", workspace_id)
            raise BillingStateUnavailableError(
                workspace_id, f"Billing state unavailable for workspace {workspace_id}"
            ) from exc
        if billing is None:
            return BillingState.default_for(workspace_id)
        return billing

    def _resolve_from_billing(
        self,
        workspace_id: str,
        feature: str,
        billing: BillingState,
        actor_id: Optional[str],
    ) -> EntitlementCheckResult:
        now = self._clock()
        decision = evaluate_access(
            billing,
            get_minimum_tier_for(feature),
            now=now,
            trial_tier=self._trial_tier,
        )
        result = EntitlementCheckResult(
            feature=feature,
            enabled=decision.enabled,
            tier=decision.tier,
            reason=decision.reason,
            cached=False,
            resolved_at=now,
            cache_ttl_remaining=self._ttl_seconds,
        )

        try:
            self._cache.put(workspace_id, feature, result, self._ttl_seconds)
        except Exception:
            logger.exception("Entitlement cache write failed for workspace %s", workspace_id)

        self._publish_audit(workspace_id, result, actor_id)
        return result

    def _publish_audit(
        self,
        workspace_id: str,
        result: EntitlementCheckResult,
        actor_id: Optional[str],
    ) -> None:
        try:
            self._audit.submit(EntitlementAuditEvent.from_result(workspace_id, result, actor_id))
        except Exception:
            logger.warning("Entitlement audit submission failed for workspace %s", workspace_id, exc_info=True)
