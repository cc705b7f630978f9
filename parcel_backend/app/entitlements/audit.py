"""Best-effort audit trail for entitlement resolutions."""
from __future__ import annotations

import logging
import queue
from datetime import datetime, timezone
from threading import Event, Lock, Thread
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from .models import DenialReason, EntitlementCheckResult, SubscriptionTier

logger = logging.getLogger("entitlements.audit")

_STOP = object()


class EntitlementAuditEvent(BaseModel):
    """Record of one resolved entitlement check."""

    workspace_id: str
    feature: str
    enabled: bool
    reason: Optional[DenialReason] = None
    tier: SubscriptionTier
    cached: bool = False
    actor_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_result(
        cls,
        workspace_id: str,
        result: EntitlementCheckResult,
        actor_id: Optional[str],
    ) -> "EntitlementAuditEvent":
        return cls(
            workspace_id=workspace_id,
            feature=result.feature,
            enabled=result.enabled,
            reason=result.reason,
            tier=result.tier,
            cached=result.cached,
            actor_id=actor_id,
            timestamp=result.resolved_at,
        )


class AuditSink(Protocol):
    """Recipient of entitlement audit events."""

    def record(self, event: EntitlementAuditEvent) -> None:
        ...


class AuditPublisher(Protocol):
    """Non-blocking hand-off used by the resolution path."""

    def submit(self, event: EntitlementAuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Sink that writes audit events to the application logger."""

    def record(self, event: EntitlementAuditEvent) -> None:
        logger.info(
            "Entitlement check workspace=%s feature=%s enabled=%s reason=%s tier=%s actor=%s",
            event.workspace_id,
            event.feature,
            event.enabled,
            event.reason.value if event.reason else None,
            event.tier.value,
            event.actor_id,
            extra={"entitlement_feature": event.feature, "workspace_id": event.workspace_id},
        )


class NullAuditPublisher:
    """Publisher that discards events; used when auditing is disabled."""

    def submit(self, event: EntitlementAuditEvent) -> None:
        return None


class BackgroundAuditDispatcher:
    """Forwards audit events to a sink from a daemon worker thread.

    ``submit`` never blocks: events are dropped with a warning when the queue
    is full. Sink failures are logged and never reach the submitter.
    """

    def __init__(self, sink: AuditSink, *, maxsize: int = 10_000) -> None:
        self._sink = sink
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._stopped = Event()
        self._submit_lock = Lock()
        self._worker: Optional[Thread] = None
        self.dropped = 0

    def start(self) -> "BackgroundAuditDispatcher":
        if self._worker is None or not self._worker.is_alive():
            self._stopped.clear()
            self._worker = Thread(target=self._run, name="entitlement-audit", daemon=True)
            self._worker.start()
        return self

    def submit(self, event: EntitlementAuditEvent) -> None:
        with self._submit_lock:
            if self._stopped.is_set():
                return
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                self.dropped += 1
                logger.warning("Entitlement audit queue is full; dropping event")

    def join(self) -> None:
        """Block until every queued event has been handed to the sink."""

        self._queue.join()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        # Nothing can be enqueued behind the stop marker once the flag is set.
        with self._submit_lock:
            if self._stopped.is_set():
                return
            self._stopped.set()
        worker = self._worker
        if worker is None:
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Entitlement audit queue still full at shutdown")
        worker.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._sink.record(item)  # type: ignore[arg-type]
            except Exception:
                logger.exception("Failed to record entitlement audit event")
            finally:
                self._queue.task_done()
