"""Application wiring for the entitlement service and billing sync handler."""
from __future__ import annotations

import atexit
import logging
from functools import lru_cache

from ..billing import BillingSyncHandler, LoggingBillingSyncEventLogger
from ..entitlements import (
    AuditPublisher,
    AuditSink,
    BackgroundAuditDispatcher,
    EntitlementService,
    InMemoryEntitlementCache,
    LoggingAuditSink,
    NullAuditPublisher,
    coerce_tier,
)
from ..entitlements.repository import PostgresAuditSink, PostgresBillingStateStore
from ... import config

logger = logging.getLogger("entitlements")


def _build_audit_sink() -> AuditSink:
    if config.ENTITLEMENT_AUDIT_BACKEND == "postgres":
        return PostgresAuditSink()
    if config.ENTITLEMENT_AUDIT_BACKEND != "logging":
        logger.warning(
            "Unknown ENTITLEMENT_AUDIT_BACKEND %r; falling back to logging",
            config.ENTITLEMENT_AUDIT_BACKEND,
        )
    return LoggingAuditSink()


@lru_cache(maxsize=1)
def get_audit_publisher() -> AuditPublisher:
    if not config.ENTITLEMENT_AUDIT_ENABLED:
        return NullAuditPublisher()
    dispatcher = BackgroundAuditDispatcher(
        _build_audit_sink(),
        maxsize=config.ENTITLEMENT_AUDIT_QUEUE_SIZE,
    ).start()
    atexit.register(dispatcher.stop)
    return dispatcher


@lru_cache(maxsize=1)
def get_billing_state_store() -> PostgresBillingStateStore:
    return PostgresBillingStateStore()


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    service = EntitlementService(
        billing_store=get_billing_state_store(),
        cache=InMemoryEntitlementCache(),
        audit_publisher=get_audit_publisher(),
        ttl_seconds=config.ENTITLEMENT_CACHE_TTL_SECONDS,
        trial_tier=coerce_tier(config.ENTITLEMENT_TRIAL_TIER),
    )
    logger.info(
        "Entitlement service ready ttl=%ss trial_tier=%s",
        service.ttl_seconds,
        config.ENTITLEMENT_TRIAL_TIER,
    )
    return service


@lru_cache(maxsize=1)
def get_billing_sync_handler() -> BillingSyncHandler:
    return BillingSyncHandler(
        store=get_billing_state_store(),
        entitlement_invalidator=get_entitlement_service(),
        event_logger=LoggingBillingSyncEventLogger(),
    )


__all__ = [
    "get_audit_publisher",
    "get_billing_state_store",
    "get_billing_sync_handler",
    "get_entitlement_service",
]
