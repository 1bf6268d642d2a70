"""
Service entry point: configure logging, load seed data, wire the engine and
serve the HTTP API with uvicorn
"""
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI

from hybrid_recommender import config
from hybrid_recommender.api import create_app
from hybrid_recommender.logging_config import configure_logging
from hybrid_recommender.metrics import ServiceMetrics, start_metrics_server
from hybrid_recommender.recommendation_service import build_recommendation_service
from hybrid_recommender.services.data_store import InMemoryInteractionStore, InMemoryItemCatalog
from hybrid_recommender.services.scheduler import SchedulerService

logger = structlog.get_logger(__name__)


def build_app(items_csv: Optional[str] = None,
              interactions_csv: Optional[str] = None,
              metrics: Optional[ServiceMetrics] = None,
              with_scheduler: Optional[bool] = None) -> FastAPI:
    """Wire the engine from configuration and wrap it in the HTTP app"""
    items_csv = items_csv or config.DATA_CONFIG['items_csv']
    interactions_csv = interactions_csv or config.DATA_CONFIG['interactions_csv']

    catalog = InMemoryItemCatalog.from_csv(items_csv) if items_csv else InMemoryItemCatalog()
    store = (InMemoryInteractionStore.from_csv(interactions_csv)
             if interactions_csv else InMemoryInteractionStore())
    if not items_csv:
        logger.warning("No item catalog configured, starting with an empty catalog")

    metrics = metrics or ServiceMetrics()
    orchestrator = build_recommendation_service(catalog, store, metrics=metrics)

    if with_scheduler is None:
        with_scheduler = config.SCHEDULER_CONFIG['enabled']
    scheduler = None
    if with_scheduler:
        scheduler = SchedulerService.from_config(
            orchestrator, config.SCHEDULER_CONFIG,
            on_job_skipped=lambda job: metrics.batch_jobs_skipped.labels(job=job).inc(),
        )

    return create_app(
        orchestrator,
        scheduler=scheduler,
        cors_origins=config.API_CONFIG['cors_origins'],
        version=config.API_CONFIG['version'],
    )


def main():
    service_config = config.SERVICE_CONFIG
    configure_logging(service_config['log_level'], service_config['log_json'])

    metrics = ServiceMetrics()
    try:
        start_metrics_server(service_config['metrics_port'], metrics)
        logger.info("Prometheus metrics server started", port=service_config['metrics_port'])
    except OSError as e:
        logger.warning("Prometheus metrics server failed to start", error=str(e))

    app = build_app(metrics=metrics)
    uvicorn.run(
        app,
        host=config.API_CONFIG['host'],
        port=config.API_CONFIG['port'],
        log_level=service_config['log_level'].lower(),
    )


if __name__ == "__main__":
    main()
