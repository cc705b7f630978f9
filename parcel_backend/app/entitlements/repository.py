"""Persistence adapters for billing state and entitlement audit records."""
from __future__ import annotations

from contextlib import contextmanager
from threading import Event, Lock, Thread
from typing import Callable, Dict, Iterator, Optional, Tuple

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import QueryCanceledError
from psycopg2.extensions import cursor as PgCursor

from .audit import EntitlementAuditEvent
from .exceptions import ResolutionCancelledError
from .models import BillingState, SubscriptionStatus, SubscriptionTier

ConnectionFactory = Callable[[], PgConnection]


def _cancelled(cancel: Optional[Event]) -> bool:
    return cancel is not None and cancel.is_set()


def _raise_cancelled(workspace_id: str) -> None:
    raise ResolutionCancelledError(workspace_id, "Billing state lookup cancelled")


class InMemoryBillingStateStore:
    """Thread-safe store suitable for tests and local development."""

    def __init__(self) -> None:
        self._states: Dict[str, BillingState] = {}
        self._lock = Lock()
        self.reads = 0

    def get_billing_state(
        self,
        workspace_id: str,
        *,
        cancel: Optional[Event] = None,
    ) -> Optional[BillingState]:
        if _cancelled(cancel):
            _raise_cancelled(workspace_id)
        with self._lock:
            self.reads += 1
            return self._states.get(workspace_id)

    def upsert_billing_state(self, workspace_id: str, state: BillingState) -> BillingState:
        if state.workspace_id != workspace_id:
            state = state.model_copy(update={"workspace_id": workspace_id})
        with self._lock:
            self._states[workspace_id] = state
        return state


@contextmanager
def managed_connection(
    connection_factory: ConnectionFactory,
    conn: Optional[PgConnection] = None,
) -> Iterator[Tuple[PgConnection, bool]]:
    """Yield ``(connection, managed)``; managed connections are committed and closed here."""

    if conn is not None:
        yield conn, False
        return

    connection = connection_factory()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


@contextmanager
def cancel_watch(
    connection: PgConnection,
    cancel: Optional[Event],
    *,
    poll_interval: float = 0.05,
) -> Iterator[None]:
    """Cancel the in-flight statement on ``connection`` if ``cancel`` is set."""

    if cancel is None:
        yield
        return

    finished = Event()

    def _watch() -> None:
        while not finished.is_set():
            if cancel.wait(poll_interval):
                if not finished.is_set():
                    connection.cancel()
                return

    watcher = Thread(target=_watch, name="billing-state-cancel", daemon=True)
    watcher.start()
    try:
        yield
    finally:
        finished.set()
        watcher.join()


def _default_connection_factory() -> PgConnection:
    from ...config import DB_CONFIG, DB_CONNECT_TIMEOUT

    return psycopg2.connect(connect_timeout=DB_CONNECT_TIMEOUT, **DB_CONFIG)


def _row_to_billing_state(row: dict) -> BillingState:
    return BillingState(
        workspace_id=row["workspace_id"],
        tier=SubscriptionTier(row["tier"]),
        status=SubscriptionStatus(row["status"]),
        trial_end=row.get("trial_end"),
        customer_id=row.get("stripe_customer_id"),
        subscription_id=row.get("stripe_subscription_id"),
        current_period_start=row.get("current_period_start"),
        current_period_end=row.get("current_period_end"),
        last_event_id=row.get("last_webhook_event_id"),
        synced_at=row["synced_at"],
    )


class _PostgresRepository:
    def __init__(
        self,
        *,
        conn: Optional[PgConnection] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self._conn = conn
        self._connection_factory = connection_factory or _default_connection_factory

    @contextmanager
    def _cursor(self, cancel: Optional[Event] = None) -> Iterator[PgCursor]:
        with managed_connection(self._connection_factory, self._conn) as (connection, _managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                with cancel_watch(connection, cancel):
                    yield cursor
            finally:
                cursor.close()


class PostgresBillingStateStore(_PostgresRepository):
    """Billing state persisted in the ``billing_state`` table, one row per workspace."""

    def get_billing_state(
        self,
        workspace_id: str,
        *,
        cancel: Optional[Event] = None,
    ) -> Optional[BillingState]:
        """Fetch the workspace's billing row.

        ``cancel`` is honoured before connecting and while the query runs; a
        signal raised mid-query cancels the statement on the server.
        """

        if _cancelled(cancel):
            _raise_cancelled(workspace_id)
        try:
            with self._cursor(cancel) as cursor:
                cursor.execute(
                    """
                    SELECT workspace_id, tier, status, trial_end,
                           stripe_customer_id, stripe_subscription_id,
                           current_period_start, current_period_end,
                           last_webhook_event_id, synced_at
                    FROM billing_state
                    WHERE workspace_id = %s
                    """,
                    (workspace_id,),
                )
                row = cursor.fetchone()
        except QueryCanceledError as exc:
            if _cancelled(cancel):
                raise ResolutionCancelledError(workspace_id, "Billing state lookup cancelled") from exc
            raise
        if row is None:
            return None
        return _row_to_billing_state(dict(row))

    def upsert_billing_state(self, workspace_id: str, state: BillingState) -> BillingState:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_state (
                    workspace_id,
                    tier,
                    status,
                    trial_end,
                    stripe_customer_id,
                    stripe_subscription_id,
                    current_period_start,
                    current_period_end,
                    last_webhook_event_id,
                    last_webhook_at,
                    synced_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), %s)
                ON CONFLICT (workspace_id) DO UPDATE SET
                    tier = EXCLUDED.tier,
                    status = EXCLUDED.status,
                    trial_end = EXCLUDED.trial_end,
                    stripe_customer_id = EXCLUDED.stripe_customer_id,
                    stripe_subscription_id = EXCLUDED.stripe_subscription_id,
                    current_period_start = EXCLUDED.current_period_start,
                    current_period_end = EXCLUDED.current_period_end,
                    last_webhook_event_id = EXCLUDED.last_webhook_event_id,
                    last_webhook_at = EXCLUDED.last_webhook_at,
                    synced_at = EXCLUDED.synced_at
                RETURNING workspace_id, tier, status, trial_end,
                          stripe_customer_id, stripe_subscription_id,
                          current_period_start, current_period_end,
                          last_webhook_event_id, synced_at
                """,
                (
                    workspace_id,
                    state.tier.value,
                    state.status.value,
                    state.trial_end,
                    state.customer_id,
                    state.subscription_id,
                    state.current_period_start,
                    state.current_period_end,
                    state.last_event_id,
                    state.synced_at,
                ),
            )
            row = cursor.fetchone()
        if row is None:  # pragma: no cover - RETURNING always yields a row
            raise RuntimeError("Failed to upsert billing state")
        return _row_to_billing_state(dict(row))


class PostgresAuditSink(_PostgresRepository):
    """Appends entitlement checks to the ``entitlement_checks`` table."""

    def record(self, event: EntitlementAuditEvent) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO entitlement_checks (
                    workspace_id,
                    user_id,
                    feature,
                    result,
                    reason_code,
                    tier,
                    cached,
                    checked_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    event.workspace_id,
                    event.actor_id,
                    event.feature,
                    event.enabled,
                    event.reason.value if event.reason else None,
                    event.tier.value,
                    event.cached,
                    event.timestamp,
                ),
            )
