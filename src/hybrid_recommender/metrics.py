"""
Prometheus metrics for the recommendation service
"""
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


class ServiceMetrics:
    """Counters and histograms owned by one service instance"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.recommendations_served = Counter(
            'recommendations_served_total',
            'Recommendation responses served',
            ['algorithm'],
            registry=self.registry,
        )
        self.fallbacks = Counter(
            'recommendation_fallbacks_total',
            'Responses that fell back to popularity ranking',
            ['algorithm'],
            registry=self.registry,
        )
        self.interactions_tracked = Counter(
            'interactions_tracked_total',
            'Interactions recorded',
            ['interaction_type'],
            registry=self.registry,
        )
        self.batch_jobs_skipped = Counter(
            'batch_jobs_skipped_total',
            'Batch job triggers skipped because a run was in progress',
            ['job'],
            registry=self.registry,
        )
        self.request_latency = Histogram(
            'recommendation_latency_seconds',
            'Time spent generating recommendations',
            ['algorithm'],
            registry=self.registry,
        )


def start_metrics_server(port: int, metrics: ServiceMetrics) -> None:
    """Expose the metrics registry over HTTP"""
    start_http_server(port, registry=metrics.registry)
