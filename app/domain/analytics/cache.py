import json
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from app.domain.analytics.schemas import AnalyticsQuery, CacheStats
from app.infra.metrics import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_NAMESPACE = "analytics"
DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    data: T
    expires_at: float


def generate_key(method: str, params: Mapping[str, Any] | None) -> str:
    """Build a cache key that does not depend on parameter insertion order."""
    canonical = json.dumps(
        dict(params or {}),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return f"{KEY_NAMESPACE}:{method}:{canonical}"


class AnalyticsCache:
    """Process-wide key/value store with per-entry expiry.

    Expired entries are never returned. ``get`` drops them on access and
    ``cleanup`` sweeps the rest; a single lock guards the map.
    """

    def __init__(
        self,
        default_ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    generate_key = staticmethod(generate_key)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl_seconds = self.default_ttl_seconds if ttl is None else ttl
        entry = CacheEntry(data=value, expires_at=self._clock() + ttl_seconds)
        with self._lock:
            self._entries[key] = entry

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.data

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        return removed

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def get_stats(self) -> CacheStats:
        with self._lock:
            size = len(self._entries)
            hits, misses = self._hits, self._misses
        lookups = hits + misses
        return CacheStats(
            size=size,
            hits=hits,
            misses=misses,
            hit_rate=round(hits / lookups * 100, 2) if lookups else 0.0,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def with_cache(
    cache: AnalyticsCache,
    method_name: str,
    fn: Callable[[AnalyticsQuery], Awaitable[T]],
    ttl: float | None = None,
) -> Callable[[AnalyticsQuery | None], Awaitable[T]]:
    """Wrap an aggregation so repeated calls within ``ttl`` reuse its result.

    Keys are namespaced by ``method_name`` so wrapped aggregations never share
    entries. Exceptions from ``fn`` propagate and leave the cache untouched.
    """

    async def cached(query: AnalyticsQuery | None = None) -> T:
        query = query or AnalyticsQuery()
        key = generate_key(method_name, query.cache_params())
        try:
            hit = cache.get(key)
        except MemoryError:
            logger.warning("analytics_cache_unavailable", extra={"extra": {"method": method_name}})
            return await fn(query)
        metrics.record_cache_lookup(method_name, hit is not None)
        if hit is not None:
            return hit

        result = await fn(query)
        try:
            cache.set(key, result, ttl)
        except MemoryError:
            logger.warning("analytics_cache_unavailable", extra={"extra": {"method": method_name}})
        return result

    cached.__name__ = method_name
    cached.__qualname__ = method_name
    return cached
