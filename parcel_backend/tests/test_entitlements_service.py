from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Event
from typing import Callable, Dict, List, Optional

import pytest

from parcel_backend.app.billing import BillingSyncHandler
from parcel_backend.app.entitlements import (
    BillingState,
    BillingStateUnavailableError,
    DenialReason,
    EntitlementAuditEvent,
    EntitlementService,
    InMemoryEntitlementCache,
    ResolutionCancelledError,
    SubscriptionStatus,
    SubscriptionTier,
)
from parcel_backend.app.entitlements.repository import InMemoryBillingStateStore

BRANDED = "ccp-06:branded-reports"
EXPORT = "ccp-15:export"
DISCOVERY = "ccp-01:parcel-discovery"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingAuditPublisher:
    def __init__(self) -> None:
        self.events: List[EntitlementAuditEvent] = []

    def submit(self, event: EntitlementAuditEvent) -> None:
        self.events.append(event)


class ExplodingAuditPublisher:
    def submit(self, event: EntitlementAuditEvent) -> None:
        raise RuntimeError("audit backend down")


class ExplodingCache(InMemoryEntitlementCache):
    def get(self, workspace_id, feature):
        raise RuntimeError("cache read failed")

    def put(self, workspace_id, feature, result, ttl_seconds):
        raise RuntimeError("cache write failed")


class UnavailableStore(InMemoryBillingStateStore):
    def get_billing_state(self, workspace_id: str, *, cancel: Optional[Event] = None) -> Optional[BillingState]:
        raise ConnectionError("database unreachable")


class HookedStore(InMemoryBillingStateStore):
    """Runs ``after_read`` once a lookup has captured its snapshot."""

    def __init__(self) -> None:
        super().__init__()
        self.after_read: Optional[Callable[[], None]] = None

    def get_billing_state(self, workspace_id: str, *, cancel: Optional[Event] = None) -> Optional[BillingState]:
        snapshot = super().get_billing_state(workspace_id, cancel=cancel)
        hook, self.after_read = self.after_read, None
        if hook:
            hook()
        return snapshot


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> HookedStore:
    return HookedStore()


@pytest.fixture
def audit() -> RecordingAuditPublisher:
    return RecordingAuditPublisher()


@pytest.fixture
def entitlement_service(store, clock, audit) -> EntitlementService:
    return EntitlementService(
        billing_store=store,
        cache=InMemoryEntitlementCache(clock=clock),
        audit_publisher=audit,
        clock=clock,
        ttl_seconds=300,
    )


def _seed(store: InMemoryBillingStateStore, workspace_id: str, tier: SubscriptionTier, status=SubscriptionStatus.ACTIVE, **extra) -> None:
    store.upsert_billing_state(
        workspace_id,
        BillingState(workspace_id=workspace_id, tier=tier, status=status, **extra),
    )


def test_allowed_feature_for_sufficient_tier(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)

    result = entitlement_service.resolve("ws-1", BRANDED, "user-1")

    assert result.enabled is True
    assert result.reason is None
    assert result.tier == SubscriptionTier.PRO
    assert result.cached is False
    assert result.cache_ttl_remaining == 300


def test_missing_billing_record_defaults_to_free_active(entitlement_service) -> None:
    free = entitlement_service.resolve("ws-new", DISCOVERY)
    paid = entitlement_service.resolve("ws-new", BRANDED)

    assert free.enabled is True
    assert free.tier == SubscriptionTier.FREE
    assert paid.enabled is False
    assert paid.reason == DenialReason.TIER_INSUFFICIENT


def test_second_resolve_is_served_from_cache(entitlement_service, store, clock) -> None:
    _seed(store, "ws-1", SubscriptionTier.FREE)

    first = entitlement_service.resolve("ws-1", BRANDED)
    clock.advance(100)
    second = entitlement_service.resolve("ws-1", BRANDED)

    assert (first.enabled, first.reason, first.tier) == (second.enabled, second.reason, second.tier)
    assert first.cached is False
    assert second.cached is True
    assert second.cache_ttl_remaining == 200
    assert second.resolved_at == first.resolved_at
    assert store.reads == 1


def test_cache_expiry_triggers_refetch(entitlement_service, store, clock) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    entitlement_service.resolve("ws-1", BRANDED)

    clock.advance(301)
    refreshed = entitlement_service.resolve("ws-1", BRANDED)

    assert refreshed.cached is False
    assert store.reads == 2


def test_unknown_feature_never_touches_store_or_cache(entitlement_service, store, audit) -> None:
    result = entitlement_service.resolve("ws-1", "nonexistent-feature", "user-1")

    assert result.enabled is False
    assert result.reason == DenialReason.FEATURE_UNAVAILABLE
    assert result.cached is False
    assert result.cache_ttl_remaining is None
    assert store.reads == 0
    assert entitlement_service.get_cache_statistics()["cacheSize"] == 0
    assert audit.events == []


def test_inactive_enterprise_reports_subscription_inactive(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.ENTERPRISE, SubscriptionStatus.PAST_DUE)

    result = entitlement_service.resolve("ws-1", EXPORT)

    assert result.enabled is False
    assert result.reason == DenialReason.SUBSCRIPTION_INACTIVE


def test_expired_trial(entitlement_service, store, clock) -> None:
    _seed(
        store,
        "ws-1",
        SubscriptionTier.FREE,
        SubscriptionStatus.TRIALING,
        trial_end=clock() - timedelta(days=1),
    )

    assert entitlement_service.resolve("ws-1", BRANDED).reason == DenialReason.GRACE_PERIOD_EXPIRED
    assert entitlement_service.resolve("ws-1", DISCOVERY).enabled is True


def test_active_trial_reports_granted_tier(entitlement_service, store, clock) -> None:
    _seed(
        store,
        "ws-1",
        SubscriptionTier.FREE,
        SubscriptionStatus.TRIALING,
        trial_end=clock() + timedelta(days=14),
    )

    result = entitlement_service.resolve("ws-1", BRANDED)

    assert result.enabled is True
    assert result.tier == SubscriptionTier.PRO


def test_trial_without_end_date_gets_no_uplift(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.FREE, SubscriptionStatus.TRIALING)

    result = entitlement_service.resolve("ws-1", BRANDED)

    assert result.enabled is False
    assert result.reason == DenialReason.TIER_INSUFFICIENT
    assert result.tier == SubscriptionTier.FREE


def test_sync_then_resolve(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.FREE)
    handler = BillingSyncHandler(store=store, entitlement_invalidator=entitlement_service)

    denied = entitlement_service.resolve("ws-1", BRANDED)
    assert denied.enabled is False
    assert entitlement_service.resolve("ws-1", BRANDED).cached is True

    handler.sync_from_provider_event(
        "ws-1",
        BillingState(workspace_id="ws-1", tier=SubscriptionTier.PRO, status=SubscriptionStatus.ACTIVE),
    )
    allowed = entitlement_service.resolve("ws-1", BRANDED)

    assert allowed.enabled is True
    assert allowed.cached is False


def test_invalidation_does_not_touch_other_workspaces(entitlement_service, store) -> None:
    _seed(store, "ws-a", SubscriptionTier.PRO)
    _seed(store, "ws-b", SubscriptionTier.FREE)
    entitlement_service.resolve("ws-a", BRANDED)
    before = entitlement_service.resolve("ws-b", BRANDED)
    cached_before = entitlement_service.resolve("ws-b", BRANDED)

    entitlement_service.invalidate_workspace("ws-a")
    after = entitlement_service.resolve("ws-b", BRANDED)

    assert after.cached is True
    assert (after.enabled, after.reason, after.tier) == (before.enabled, before.reason, before.tier)
    assert after.resolved_at == cached_before.resolved_at
    assert entitlement_service.resolve("ws-a", BRANDED).cached is False


def test_resolve_many_matches_individual_resolves_from_cold_cache(store, clock) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    features = [BRANDED, EXPORT, DISCOVERY, "nonexistent-feature"]

    batch_service = EntitlementService(store, InMemoryEntitlementCache(clock=clock), clock=clock)
    single_service = EntitlementService(store, InMemoryEntitlementCache(clock=clock), clock=clock)

    batch = batch_service.resolve_many("ws-1", features)
    singles = {feature: single_service.resolve("ws-1", feature) for feature in features}

    assert list(batch) == features
    for feature in features:
        assert batch[feature] == singles[feature]


def test_resolve_many_reads_billing_state_once(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.PORTFOLIO)

    results = entitlement_service.resolve_many("ws-1", [BRANDED, EXPORT, DISCOVERY, BRANDED])

    assert store.reads == 1
    assert len(results) == 3
    assert all(result.enabled for result in results.values())


def test_resolve_many_tracks_hits_per_feature(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    entitlement_service.resolve("ws-1", BRANDED)

    results = entitlement_service.resolve_many("ws-1", [BRANDED, EXPORT])

    assert results[BRANDED].cached is True
    assert results[EXPORT].cached is False
    assert results[EXPORT].reason == DenialReason.TIER_INSUFFICIENT
    assert store.reads == 2


def test_resolve_many_all_cached_skips_store(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    entitlement_service.resolve_many("ws-1", [BRANDED, EXPORT])

    entitlement_service.resolve_many("ws-1", [BRANDED, EXPORT, "nonexistent-feature"])

    assert store.reads == 1


def test_get_enabled_features(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)

    enabled = entitlement_service.get_enabled_features("ws-1")

    assert BRANDED in enabled
    assert "ccp-08:saved-parcels" in enabled
    assert EXPORT not in enabled
    assert "ccp-10:collaboration" not in enabled


def test_store_failure_is_not_a_denial(clock) -> None:
    service = EntitlementService(UnavailableStore(), InMemoryEntitlementCache(clock=clock), clock=clock)

    with pytest.raises(BillingStateUnavailableError) as exc:
        service.resolve("ws-1", BRANDED)

    assert exc.value.workspace_id == "ws-1"
    assert isinstance(exc.value.__cause__, ConnectionError)
    assert service.get_cache_statistics()["cacheSize"] == 0


def test_store_failure_in_batch_raises(clock) -> None:
    service = EntitlementService(UnavailableStore(), InMemoryEntitlementCache(clock=clock), clock=clock)

    with pytest.raises(BillingStateUnavailableError):
        service.resolve_many("ws-1", [BRANDED, DISCOVERY])


def test_cancel_signal_stops_before_store_call(entitlement_service, store) -> None:
    cancel = Event()
    cancel.set()

    with pytest.raises(ResolutionCancelledError):
        entitlement_service.resolve("ws-1", BRANDED, cancel=cancel)

    assert store.reads == 0


def test_cancel_signal_is_forwarded_to_store(entitlement_service, store) -> None:
    cancel = Event()
    seen: Dict[str, Optional[Event]] = {}
    original = store.get_billing_state

    def spy(workspace_id: str, *, cancel: Optional[Event] = None):
        seen["cancel"] = cancel
        return original(workspace_id, cancel=cancel)

    store.get_billing_state = spy  # type: ignore[method-assign]
    entitlement_service.resolve("ws-1", BRANDED, cancel=cancel)

    assert seen["cancel"] is cancel


def test_cached_hit_ignores_cancel_signal(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    entitlement_service.resolve("ws-1", BRANDED)
    cancel = Event()
    cancel.set()

    assert entitlement_service.resolve("ws-1", BRANDED, cancel=cancel).cached is True


def test_audit_event_emitted_on_fresh_resolution(entitlement_service, store, audit) -> None:
    _seed(store, "ws-1", SubscriptionTier.FREE)

    result = entitlement_service.resolve("ws-1", BRANDED, "user-7")
    entitlement_service.resolve("ws-1", BRANDED, "user-7")

    assert len(audit.events) == 1
    event = audit.events[0]
    assert event.workspace_id == "ws-1"
    assert event.feature == BRANDED
    assert event.enabled is False
    assert event.reason == DenialReason.TIER_INSUFFICIENT
    assert event.actor_id == "user-7"
    assert event.timestamp == result.resolved_at


def test_audit_failure_does_not_change_result(store, clock) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    service = EntitlementService(
        store,
        InMemoryEntitlementCache(clock=clock),
        audit_publisher=ExplodingAuditPublisher(),
        clock=clock,
    )

    result = service.resolve("ws-1", BRANDED, "user-1")

    assert result.enabled is True


def test_cache_failures_are_non_fatal(store, clock) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    service = EntitlementService(store, ExplodingCache(clock=clock), clock=clock)

    first = service.resolve("ws-1", BRANDED)
    second = service.resolve("ws-1", BRANDED)

    assert first.enabled is True
    assert second.enabled is True
    assert second.cached is False


def test_stale_entry_written_after_invalidation_expires_within_ttl(entitlement_service, store, clock) -> None:
    _seed(store, "ws-1", SubscriptionTier.FREE)
    handler = BillingSyncHandler(store=store, entitlement_invalidator=entitlement_service)

    def upgrade_during_lookup() -> None:
        handler.sync_from_provider_event(
            "ws-1",
            BillingState(workspace_id="ws-1", tier=SubscriptionTier.PRO, status=SubscriptionStatus.ACTIVE),
        )

    store.after_read = upgrade_during_lookup
    in_flight = entitlement_service.resolve("ws-1", BRANDED)
    assert in_flight.enabled is False

    stale = entitlement_service.resolve("ws-1", BRANDED)
    assert stale.cached is True
    assert stale.enabled is False

    clock.advance(entitlement_service.ttl_seconds)
    converged = entitlement_service.resolve("ws-1", BRANDED)
    assert converged.cached is False
    assert converged.enabled is True


def test_cache_statistics_and_clear(entitlement_service, store, clock) -> None:
    _seed(store, "ws-1", SubscriptionTier.PRO)
    entitlement_service.resolve_many("ws-1", [BRANDED, EXPORT])
    clock.advance(301)
    entitlement_service.resolve("ws-2", DISCOVERY)

    stats = entitlement_service.get_cache_statistics()
    assert stats == {"cacheSize": 3, "validEntries": 1, "expiredEntries": 2, "ttlSeconds": 300}

    assert entitlement_service.clear_cache() == 3
    assert entitlement_service.get_cache_statistics()["cacheSize"] == 0


def test_result_serializes_to_camel_case(entitlement_service, store) -> None:
    _seed(store, "ws-1", SubscriptionTier.FREE)

    payload = entitlement_service.resolve("ws-1", BRANDED).to_json()

    assert payload["feature"] == BRANDED
    assert payload["enabled"] is False
    assert payload["tier"] == "free"
    assert payload["reason"] == "TIER_INSUFFICIENT"
    assert payload["cached"] is False
    assert payload["cacheTtlRemaining"] == 300
    assert payload["resolvedAt"].startswith("2026-03-01T12:00:00")
