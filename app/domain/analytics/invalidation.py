import logging

from app.domain.analytics.cache import AnalyticsCache
from app.domain.analytics.schemas import CacheStats
from app.infra.metrics import metrics

logger = logging.getLogger(__name__)


class AnalyticsInvalidationHook:
    """Drops every memoized aggregation after a booking, payment or trip write.

    Invalidation is coarse: one write clears every report, not only the
    reports the write touched.
    """

    def __init__(self, cache: AnalyticsCache) -> None:
        self.cache = cache

    def invalidate(self, reason: str = "booking_write") -> int:
        removed = self.cache.clear()
        metrics.record_cache_invalidation(reason)
        logger.info("analytics_cache_invalidated", extra={"extra": {"reason": reason, "removed": removed}})
        return removed

    def get_stats(self) -> CacheStats:
        return self.cache.get_stats()
