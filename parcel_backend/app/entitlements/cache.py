"""Cache abstractions for resolved entitlement decisions."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from .models import EntitlementCheckResult


@dataclass(frozen=True)
class CacheEntry:
    """A resolved result plus the instant it stops being served."""

    result: EntitlementCheckResult
    cached_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def ttl_remaining(self, now: datetime) -> int:
        """Whole seconds left before expiry, rounded up."""

        remaining = (self.expires_at - now).total_seconds()
        return max(0, math.ceil(remaining))


@dataclass(frozen=True)
class CacheStatistics:
    size: int
    valid_entries: int
    expired_entries: int


class EntitlementCache(Protocol):
    """Protocol describing cache operations used by the entitlement service."""

    def get(self, workspace_id: str, feature: str) -> Optional[CacheEntry]:
        ...

    def put(
        self,
        workspace_id: str,
        feature: str,
        result: EntitlementCheckResult,
        ttl_seconds: int,
    ) -> None:
        ...

    def invalidate_workspace(self, workspace_id: str) -> int:
        ...

    def stats(self) -> CacheStatistics:
        ...

    def clear(self) -> int:
        ...


class InMemoryEntitlementCache:
    """Process-local cache keyed by ``(workspace_id, feature)``.

    Entries are grouped per workspace so invalidation touches only that
    workspace. Expired entries are evicted lazily when read. All access goes
    through a single lock.
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: Dict[str, Dict[str, CacheEntry]] = {}
        self._lock = Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, workspace_id: str, feature: str) -> Optional[CacheEntry]:
        now = self._clock()
        with self._lock:
            bucket = self._entries.get(workspace_id)
            if not bucket:
                return None
            entry = bucket.get(feature)
            if entry is None:
                return None
            if entry.is_expired(now):
                del bucket[feature]
                if not bucket:
                    self._entries.pop(workspace_id, None)
                return None
            return entry

    def put(
        self,
        workspace_id: str,
        feature: str,
        result: EntitlementCheckResult,
        ttl_seconds: int,
    ) -> None:
        if ttl_seconds <= 0:
            return
        now = self._clock()
        entry = CacheEntry(
            result=result,
            cached_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        with self._lock:
            self._entries.setdefault(workspace_id, {})[feature] = entry

    def invalidate_workspace(self, workspace_id: str) -> int:
        with self._lock:
            bucket = self._entries.pop(workspace_id, None)
        return len(bucket) if bucket else 0

    def stats(self) -> CacheStatistics:
        now = self._clock()
        valid = expired = 0
        with self._lock:
            for bucket in self._entries.values():
                for entry in bucket.values():
                    if entry.is_expired(now):
                        expired += 1
                    else:
                        valid += 1
        return CacheStatistics(size=valid + expired, valid_entries=valid, expired_entries=expired)

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""

        now = self._clock()
        removed = 0
        with self._lock:
            for workspace_id in list(self._entries):
                bucket = self._entries[workspace_id]
                stale = [feature for feature, entry in bucket.items() if entry.is_expired(now)]
                for feature in stale:
                    del bucket[feature]
                removed += len(stale)
                if not bucket:
                    del self._entries[workspace_id]
        return removed

    def clear(self) -> int:
        with self._lock:
            size = sum(len(bucket) for bucket in self._entries.values())
            self._entries.clear()
        return size
