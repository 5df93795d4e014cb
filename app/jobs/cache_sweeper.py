import asyncio
import logging

from app.domain.analytics.cache import AnalyticsCache
from app.infra.metrics import metrics

logger = logging.getLogger(__name__)


def sweep_once(cache: AnalyticsCache) -> int:
    removed = cache.cleanup()
    metrics.record_cache_evictions(removed)
    if removed:
        logger.info("analytics_cache_swept", extra={"extra": {"removed": removed, "remaining": len(cache)}})
    return removed


async def run_cache_sweeper(cache: AnalyticsCache, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(max(interval_seconds, 1))
        sweep_once(cache)
