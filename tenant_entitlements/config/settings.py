"""
Runtime settings for the entitlement engine, read from the environment.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from tenant_entitlements.entitlements.audit import (
    DEFAULT_AUDIT_WORKERS,
    DEFAULT_MAX_PENDING,
    DEFAULT_WRITE_TIMEOUT_SECONDS,
)
from tenant_entitlements.entitlements.cache import DEFAULT_CACHE_TTL_SECONDS, DEFAULT_SHARD_COUNT
from tenant_entitlements.entitlements.store import DEFAULT_READ_TIMEOUT_SECONDS, DEFAULT_READ_WORKERS


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {raw!r}")
    return value


@dataclass(frozen=True)
class EntitlementSettings:
    """Configuration for the entitlement runtime."""

    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    cache_shards: int = DEFAULT_SHARD_COUNT
    billing_read_timeout_seconds: float = DEFAULT_READ_TIMEOUT_SECONDS
    billing_read_workers: int = DEFAULT_READ_WORKERS
    audit_write_timeout_seconds: float = DEFAULT_WRITE_TIMEOUT_SECONDS
    audit_workers: int = DEFAULT_AUDIT_WORKERS
    audit_max_pending: int = DEFAULT_MAX_PENDING
    tier_policy_path: Optional[str] = None
    database_url: Optional[str] = None
    audit_database_url: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EntitlementSettings":
        """Read settings from os.environ (or the given mapping)."""
        env = os.environ if env is None else env
        database_url = env.get("DATABASE_URL") or None
        return cls(
            cache_ttl_seconds=_get_float(env, "ENTITLEMENT_CACHE_TTL", DEFAULT_CACHE_TTL_SECONDS),
            cache_shards=_get_int(env, "ENTITLEMENT_CACHE_SHARDS", DEFAULT_SHARD_COUNT),
            billing_read_timeout_seconds=_get_float(
                env, "BILLING_READ_TIMEOUT_SECONDS", DEFAULT_READ_TIMEOUT_SECONDS
            ),
            billing_read_workers=_get_int(env, "BILLING_READ_WORKERS", DEFAULT_READ_WORKERS),
            audit_write_timeout_seconds=_get_float(
                env, "AUDIT_WRITE_TIMEOUT_SECONDS", DEFAULT_WRITE_TIMEOUT_SECONDS
            ),
            audit_workers=_get_int(env, "AUDIT_WORKERS", DEFAULT_AUDIT_WORKERS),
            audit_max_pending=_get_int(env, "AUDIT_MAX_PENDING", DEFAULT_MAX_PENDING),
            tier_policy_path=env.get("TIER_POLICY_PATH") or None,
            database_url=database_url,
            audit_database_url=env.get("AUDIT_DATABASE_URL") or database_url,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
