"""
Recommendation Engine HTTP API
Serves recommendations, interaction tracking and experiment management
over FastAPI. Batch jobs run in the scheduler attached to the app lifespan.
"""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, HTTPException, Path, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from hybrid_recommender.exceptions import (
    DuplicateExperimentError, ExperimentNotFoundError, ExperimentValidationError,
    InvalidInteractionError
)
from hybrid_recommender.models.recommendation import RecommendationOptions
from hybrid_recommender.recommendation_service import RecommendationOrchestrator
from hybrid_recommender.services.scheduler import (
    SIMILARITY_JOB_ID, TRAINING_JOB_ID, TREND_JOB_ID, SchedulerService
)

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    DuplicateExperimentError: status.HTTP_409_CONFLICT,
    ExperimentValidationError: status.HTTP_400_BAD_REQUEST,
    ExperimentNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidInteractionError: status.HTTP_400_BAD_REQUEST,
}


class InteractionRequest(BaseModel):
    user_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    interaction_type: str
    value: Optional[float] = None
    duration_seconds: Optional[float] = Field(default=None, ge=0)
    context: Dict[str, Any] = Field(default_factory=dict)


def create_app(orchestrator: RecommendationOrchestrator,
               scheduler: Optional[SchedulerService] = None,
               cors_origins: Optional[List[str]] = None,
               version: str = "1.0.0") -> FastAPI:
    """Build the FastAPI application around a wired orchestrator"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Recommendation Engine Service", version=version)
        if scheduler is not None:
            scheduler.start()
        yield
        if scheduler is not None:
            scheduler.stop()
        logger.info("Shutting down Recommendation Engine Service")

    app = FastAPI(
        title="Hybrid Recommendation Engine",
        description="Menu item recommendations with A/B experimentation",
        version=version,
        lifespan=lifespan
    )
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    async def handle_engine_error(request: Request, exc: Exception) -> JSONResponse:
        code = next(code for error, code in ERROR_STATUS.items() if isinstance(exc, error))
        logger.warning("Request rejected", path=request.url.path, error=str(exc), status_code=code)
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    for error in ERROR_STATUS:
        app.add_exception_handler(error, handle_engine_error)

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "recommendation-engine",
            "version": version,
            "scheduler_running": scheduler.is_running if scheduler is not None else False,
            "timestamp": datetime.now().isoformat()
        }

    @app.get("/api/v1/recommendations/{user_id}")
    def get_recommendations(
        user_id: str = Path(..., min_length=1),
        limit: int = Query(10, ge=1, le=100),
        algorithm: Optional[str] = Query(None, description="Override the experiment/default algorithm"),
        category: Optional[str] = Query(None),
        diversity_factor: float = Query(0.3, ge=0.0, le=1.0),
        exclude_interacted: bool = Query(True),
        exclude_items: Optional[List[str]] = Query(None),
        time_of_day: Optional[str] = Query(None, description="Request context: breakfast, lunch, dinner, snack"),
        budget: Optional[float] = Query(None, ge=0, description="Request context: maximum price"),
    ):
        """Get ranked recommendations for a user"""
        context: Dict[str, Any] = {}
        if time_of_day:
            context["time_of_day"] = time_of_day
        if budget is not None:
            context["budget"] = budget
        try:
            options = RecommendationOptions(
                limit=limit,
                algorithm=algorithm,
                category=category,
                diversity_factor=diversity_factor,
                exclude_interacted=exclude_interacted,
                exclude_items=exclude_items or [],
                context=context,
            )
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"invalid options: {e.errors()[0]['msg']}")

        return orchestrator.get_recommendations(user_id, options)

    @app.get("/api/v1/trending")
    def get_trending(limit: int = Query(10, ge=1, le=100), category: Optional[str] = Query(None)):
        """Currently trending items"""
        items = orchestrator.get_trending(limit=limit, category=category)
        return {"items": items, "count": len(items)}

    @app.get("/api/v1/seasonal")
    def get_seasonal(limit: int = Query(10, ge=1, le=100),
                     period: Optional[str] = Query(None, pattern="^(breakfast|lunch|dinner|snack)$")):
        """Seasonal favourites for a meal period"""
        items = orchestrator.get_seasonal(period=period, limit=limit)
        return {"items": items, "count": len(items)}

    @app.post("/api/v1/interactions", status_code=status.HTTP_201_CREATED)
    def track_interaction(request: InteractionRequest):
        """Record a user interaction and attribute it to running experiments"""
        return orchestrator.track_interaction(
            request.user_id,
            request.item_id,
            request.interaction_type,
            value=request.value,
            context=request.context,
            duration_seconds=request.duration_seconds,
        )

    @app.post("/api/v1/experiments", status_code=status.HTTP_201_CREATED)
    def create_experiment(experiment_config: Dict[str, Any]):
        """Create an A/B experiment between two algorithms"""
        experiment_id = orchestrator.create_experiment(experiment_config)
        return {"experiment_id": experiment_id, "status": "active"}

    @app.get("/api/v1/experiments/{experiment_id}/results")
    def get_experiment_results(experiment_id: str):
        """Per-variant metrics, significance tests and the decision"""
        return orchestrator.get_experiment_results(experiment_id)

    @app.post("/api/v1/experiments/{experiment_id}/stop")
    def stop_experiment(experiment_id: str):
        orchestrator.stop_experiment(experiment_id)
        return {"experiment_id": experiment_id, "status": "stopped"}

    @app.get("/api/v1/status")
    def get_status():
        """Engine, experiment and batch job status"""
        result = orchestrator.get_service_status()
        if scheduler is not None:
            result["scheduler"] = scheduler.get_status()
        return result

    @app.post("/api/v1/jobs/{job_id}/trigger")
    def trigger_job(job_id: str):
        """Run a batch job now; overlapping runs are skipped"""
        if scheduler is None:
            raise HTTPException(status_code=503, detail="Scheduler not configured")
        jobs = {
            TREND_JOB_ID: scheduler.trend_job,
            SIMILARITY_JOB_ID: scheduler.similarity_job,
            TRAINING_JOB_ID: scheduler.train_models_job,
        }
        if job_id not in jobs:
            raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")

        logger.info("Manual job trigger", job=job_id)
        run = jobs[job_id]()
        return {
            "job": job_id,
            "status": "completed" if run.ran else "skipped",
            "result": run.result if isinstance(run.result, dict) else None,
        }

    return app
