"""Environment-driven configuration for the entitlement engine."""

from __future__ import annotations

import os
from typing import Any, Dict

from dotenv import load_dotenv

load_dotenv()


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


ENTITLEMENT_CACHE_TTL_SECONDS = _env_int("ENTITLEMENT_CACHE_TTL_SECONDS", 5 * 60)
# Tier granted while a workspace is inside an active trial window.
ENTITLEMENT_TRIAL_TIER = os.getenv("ENTITLEMENT_TRIAL_TIER", "pro")

ENTITLEMENT_AUDIT_ENABLED = _env_bool(os.getenv("ENTITLEMENT_AUDIT_ENABLED", "true"))
ENTITLEMENT_AUDIT_BACKEND = os.getenv("ENTITLEMENT_AUDIT_BACKEND", "logging").strip().lower()
ENTITLEMENT_AUDIT_QUEUE_SIZE = _env_int("ENTITLEMENT_AUDIT_QUEUE_SIZE", 10_000)

DB_CONNECT_TIMEOUT = _env_int("DB_CONNECT_TIMEOUT", 5)

DB_CONFIG: Dict[str, Any] = {
    "host": os.getenv("DB_HOST", "127.0.0.1"),
    "port": _env_int("DB_PORT", 5432),
    "dbname": os.getenv("DB_NAME", "parcel_db"),
    "user": os.getenv("DB_USER", "parcel_user"),
    "password": os.getenv("DB_PASSWORD", "parcel_pass"),
}
