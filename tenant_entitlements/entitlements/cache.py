"""
Entitlement Cache - in-process TTL cache with per-tenant invalidation.

Provides:
- CacheEntry: (tenant, feature) -> result with a monotonic expiry
- EntitlementCache: Sharded cache with lazy expiry and tenant invalidation
- CacheStats: size / live / expired counts

Sharding is by tenant id, so every entry of a tenant lives in one shard and
invalidate_tenant() takes exactly one shard lock. Checks for other tenants
never wait on it.

CRITICAL: Billing state changes MUST invalidate cached entitlements before
the sync handler returns.
"""

import logging
import time
import zlib
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from tenant_entitlements.entitlements.models import EntitlementCheckResult

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300  # 5 minutes
DEFAULT_SHARD_COUNT = 16


@dataclass(frozen=True)
class CacheEntry:
    """Cached result. Replaced wholesale on recompute, never mutated."""

    tenant_id: str
    feature: str
    result: EntitlementCheckResult
    expires_at: float  # monotonic clock seconds

    def remaining(self, now: float) -> float:
        return self.expires_at - now

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class CacheStats:
    size: int
    live_count: int
    expired_count: int
    ttl_seconds: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "size": self.size,
            "liveCount": self.live_count,
            "expiredCount": self.expired_count,
            "ttlSeconds": self.ttl_seconds,
        }


class _Shard:
    __slots__ = ("lock", "tenants", "generations")

    def __init__(self):
        self.lock = Lock()
        # tenant_id -> feature -> entry
        self.tenants: Dict[str, Dict[str, CacheEntry]] = {}
        # tenant_id -> invalidation counter
        self.generations: Dict[str, int] = {}


class EntitlementCache:
    """
    Caching layer for resolved entitlement results.

    Usage:
        cache = EntitlementCache(ttl_seconds=300)

        result, found = cache.get(tenant_id, feature)
        if not found:
            result = compute(...)
            cache.put(tenant_id, feature, result)

        # On billing change
        cache.invalidate_tenant(tenant_id)

    Expired entries are treated as absent on read and swept by stats() or
    sweep(). Denied results are cached exactly like allowed ones.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        shard_count: int = DEFAULT_SHARD_COUNT,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._shards: List[_Shard] = [_Shard() for _ in range(shard_count)]

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def _shard_for(self, tenant_id: str) -> _Shard:
        index = zlib.crc32(tenant_id.encode("utf-8")) % len(self._shards)
        return self._shards[index]

    def get(self, tenant_id: str, feature: str) -> Tuple[Optional[EntitlementCheckResult], bool]:
        """
        Return (result, found).

        A hit is returned as a copy with cached=True and the remaining TTL.
        Entries at or past expires_at are dropped and reported as a miss.
        """
        shard = self._shard_for(tenant_id)
        now = self._clock()
        with shard.lock:
            features = shard.tenants.get(tenant_id)
            entry = features.get(feature) if features else None
            if entry is None:
                return None, False
            if entry.is_expired(now):
                del features[feature]
                if not features:
                    del shard.tenants[tenant_id]
                return None, False

        logger.debug("Entitlement cache hit", extra={"tenant_id": tenant_id, "feature": feature})
        return entry.result.as_cache_hit(entry.remaining(now)), True

    def generation(self, tenant_id: str) -> int:
        """Invalidation counter for tenant; read before computing a result to put()."""
        shard = self._shard_for(tenant_id)
        with shard.lock:
            return shard.generations.get(tenant_id, 0)

    def put(
        self,
        tenant_id: str,
        feature: str,
        result: EntitlementCheckResult,
        ttl_seconds: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Store result for (tenant, feature).

        If generation is given and the tenant has been invalidated since it
        was read, the result was computed from superseded billing state and
        is discarded. Returns True if stored.
        """
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return False

        shard = self._shard_for(tenant_id)
        with shard.lock:
            if generation is not None and shard.generations.get(tenant_id, 0) != generation:
                logger.debug(
                    "Discarding entitlement computed before invalidation",
                    extra={"tenant_id": tenant_id, "feature": feature},
                )
                return False
            entry = CacheEntry(
                tenant_id=tenant_id,
                feature=feature,
                result=result,
                expires_at=self._clock() + ttl,
            )
            shard.tenants.setdefault(tenant_id, {})[feature] = entry
        return True

    def invalidate_tenant(self, tenant_id: str, reason: Optional[str] = None) -> int:
        """
        Remove every cached entry for tenant.

        Completes before returning, so any get() that starts afterwards misses.
        Returns the number of entries removed.
        """
        shard = self._shard_for(tenant_id)
        with shard.lock:
            shard.generations[tenant_id] = shard.generations.get(tenant_id, 0) + 1
            removed = shard.tenants.pop(tenant_id, None)
        count = len(removed) if removed else 0

        logger.info(
            "Invalidated entitlement cache for tenant",
            extra={"tenant_id": tenant_id, "reason": reason, "entries": count},
        )
        return count

    def sweep(self) -> int:
        """Drop expired entries across all shards. Returns the number removed."""
        removed = 0
        now = self._clock()
        for shard in self._shards:
            with shard.lock:
                for tenant_id in list(shard.tenants.keys()):
                    features = shard.tenants[tenant_id]
                    expired = [f for f, e in features.items() if e.is_expired(now)]
                    for feature in expired:
                        del features[feature]
                    removed += len(expired)
                    if not features:
                        del shard.tenants[tenant_id]
        if removed:
            logger.debug("Swept expired entitlement cache entries", extra={"count": removed})
        return removed

    def stats(self) -> CacheStats:
        """Count live and expired entries, then sweep the expired ones."""
        now = self._clock()
        live = 0
        expired = 0
        for shard in self._shards:
            with shard.lock:
                for features in shard.tenants.values():
                    for entry in features.values():
                        if entry.is_expired(now):
                            expired += 1
                        else:
                            live += 1
        self.sweep()
        return CacheStats(
            size=live + expired,
            live_count=live,
            expired_count=expired,
            ttl_seconds=self._ttl_seconds,
        )

    def clear(self) -> int:
        """
        Drop every entry for every tenant.

        Use with caution - only for tests or emergencies.
        """
        count = 0
        for shard in self._shards:
            with shard.lock:
                for tenant_id, features in shard.tenants.items():
                    count += len(features)
                    shard.generations[tenant_id] = shard.generations.get(tenant_id, 0) + 1
                shard.tenants.clear()
        logger.warning("Cleared entitlement cache", extra={"entries": count})
        return count
