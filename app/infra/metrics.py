import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.cache_lookups = None
            self.cache_invalidations = None
            self.cache_evictions = None
            return

        self.cache_lookups = Counter(
            "analytics_cache_lookups_total",
            "Analytics cache lookups by aggregation and result.",
            ["method", "result"],
            registry=self.registry,
        )
        self.cache_invalidations = Counter(
            "analytics_cache_invalidations_total",
            "Full analytics cache invalidations by reason.",
            ["reason"],
            registry=self.registry,
        )
        self.cache_evictions = Counter(
            "analytics_cache_evictions_total",
            "Expired analytics cache entries removed by the sweeper.",
            registry=self.registry,
        )

    def record_cache_lookup(self, method: str, hit: bool) -> None:
        if not self.enabled or self.cache_lookups is None:
            return
        self.cache_lookups.labels(method=method, result="hit" if hit else "miss").inc()

    def record_cache_invalidation(self, reason: str) -> None:
        if not self.enabled or self.cache_invalidations is None:
            return
        self.cache_invalidations.labels(reason=reason).inc()

    def record_cache_evictions(self, count: int) -> None:
        if not self.enabled or self.cache_evictions is None:
            return
        if count <= 0:
            return
        self.cache_evictions.inc(count)

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
