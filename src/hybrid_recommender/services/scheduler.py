"""
APScheduler Service for Batch Jobs
Handles:
- Trend recompute every hour
- Spike detection every 15 minutes
- Nightly similarity refresh at 2 AM
- Nightly model retraining at 3 AM
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from hybrid_recommender.algorithms.collaborative_filtering import SimilarityEngine
from hybrid_recommender.algorithms.matrix_factorization import MatrixFactorizationSGD
from hybrid_recommender.algorithms.neural import NeuralRecommendationModel
from hybrid_recommender.algorithms.trending_seasonal import TrendAnalyzer
from hybrid_recommender.services.batch_jobs import BatchJobGuard, JobRun
from hybrid_recommender.services.data_store import InteractionStore, ItemCatalog

logger = structlog.get_logger(__name__)

TREND_JOB_ID = 'trend_recompute'
SPIKE_JOB_ID = 'spike_detection'
SIMILARITY_JOB_ID = 'similarity_refresh'
TRAINING_JOB_ID = 'model_training'


class SchedulerService:
    """Schedules the periodic batch jobs of the engine"""

    def __init__(self,
                 trend_analyzer: TrendAnalyzer,
                 similarity_engine: SimilarityEngine,
                 interaction_store: InteractionStore,
                 catalog: ItemCatalog,
                 neural_model: Optional[NeuralRecommendationModel] = None,
                 factorization: Optional[MatrixFactorizationSGD] = None,
                 trend_interval_minutes: int = 60,
                 spike_interval_minutes: int = 15,
                 similarity_refresh_hour: int = 2,
                 training_hour: int = 3,
                 training_window_days: int = 90,
                 timezone: str = 'UTC',
                 scheduler: Optional[BackgroundScheduler] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 on_job_skipped: Optional[Callable[[str], None]] = None):
        self.trend_analyzer = trend_analyzer
        self.similarity_engine = similarity_engine
        self.interaction_store = interaction_store
        self.catalog = catalog
        self.neural_model = neural_model
        self.factorization = factorization
        self.trend_interval_minutes = trend_interval_minutes
        self.spike_interval_minutes = spike_interval_minutes
        self.similarity_refresh_hour = similarity_refresh_hour
        self.training_hour = training_hour
        self.training_window_days = training_window_days
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone)
        self.clock = clock
        self.training_guard = BatchJobGuard(TRAINING_JOB_ID, on_skip=on_job_skipped)
        self.is_running = False
        self.logger = logger.bind(component="SchedulerService")

    @classmethod
    def from_config(cls, orchestrator, scheduler_config: Dict[str, Any],
                    on_job_skipped: Optional[Callable[[str], None]] = None) -> 'SchedulerService':
        """Build a scheduler for the components wired into an orchestrator"""
        return cls(
            trend_analyzer=orchestrator.trend_analyzer,
            similarity_engine=orchestrator.similarity_engine,
            interaction_store=orchestrator.interaction_store,
            catalog=orchestrator.catalog,
            neural_model=orchestrator.neural_model,
            factorization=orchestrator.factorization,
            trend_interval_minutes=scheduler_config['trend_interval_minutes'],
            spike_interval_minutes=scheduler_config['spike_interval_minutes'],
            similarity_refresh_hour=scheduler_config['similarity_refresh_hour'],
            training_hour=scheduler_config['training_hour'],
            timezone=scheduler_config['timezone'],
            on_job_skipped=on_job_skipped,
        )

    # jobs

    def trend_job(self) -> JobRun:
        try:
            run = self.trend_analyzer.recompute(self.clock())
            if run.ran:
                self.logger.info("Scheduled trend recompute completed")
            return run
        except Exception:
            self.logger.exception("Trend recompute job failed")
            return JobRun(ran=False)

    def spike_job(self) -> list:
        try:
            spikes = self.trend_analyzer.detect_spikes(self.clock())
            self.logger.info("Scheduled spike detection completed", spikes=len(spikes))
            return spikes
        except Exception:
            self.logger.exception("Spike detection job failed")
            return []

    def similarity_job(self) -> JobRun:
        try:
            items = self.catalog.available_items()
            return self.similarity_engine.refresh_similarity_matrix(items, self.clock())
        except Exception:
            self.logger.exception("Similarity refresh job failed")
            return JobRun(ran=False)

    def train_models_job(self) -> JobRun:
        """Retrain the neural and matrix factorization models on recent history"""
        return self.training_guard.run(self._train_models)

    def _train_models(self) -> Dict[str, Any]:
        now = self.clock()
        interactions = self.interaction_store.between(now - timedelta(days=self.training_window_days), now)
        results: Dict[str, Any] = {'interactions': len(interactions)}

        if self.factorization is not None:
            try:
                self.factorization.fit(interactions)
                results['matrix_factorization'] = 'success' if self.factorization.is_trained else 'skipped'
            except Exception:
                self.logger.exception("Matrix factorization training failed")
                results['matrix_factorization'] = 'error'

        if self.neural_model is not None:
            try:
                run = self.neural_model.train(interactions)
                if not run.ran:
                    results['neural'] = 'already_running'
                else:
                    results['neural'] = 'success' if run.result else 'skipped'
            except Exception:
                self.logger.exception("Neural model training failed")
                results['neural'] = 'error'

        self.logger.info("Scheduled model training completed", **results)
        return results

    # lifecycle

    def start(self):
        """Register all jobs and start the scheduler"""
        if self.is_running:
            self.logger.warning("Scheduler is already running")
            return

        self.scheduler.add_job(
            func=self.trend_job,
            trigger=IntervalTrigger(minutes=self.trend_interval_minutes),
            id=TREND_JOB_ID,
            name='Trend Recompute',
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.add_job(
            func=self.spike_job,
            trigger=IntervalTrigger(minutes=self.spike_interval_minutes),
            id=SPIKE_JOB_ID,
            name='Spike Detection',
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.add_job(
            func=self.similarity_job,
            trigger=CronTrigger(hour=self.similarity_refresh_hour, minute=0),
            id=SIMILARITY_JOB_ID,
            name='Similarity Matrix Refresh (Daily)',
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.add_job(
            func=self.train_models_job,
            trigger=CronTrigger(hour=self.training_hour, minute=0),
            id=TRAINING_JOB_ID,
            name='Model Retraining (Daily)',
            replace_existing=True,
            max_instances=1
        )

        self.scheduler.start()
        self.is_running = True
        self.logger.info("Scheduler started",
                         trend_interval_minutes=self.trend_interval_minutes,
                         spike_interval_minutes=self.spike_interval_minutes,
                         similarity_refresh_hour=self.similarity_refresh_hour,
                         training_hour=self.training_hour)

    def stop(self):
        """Stop the scheduler"""
        if self.is_running:
            self.scheduler.shutdown()
            self.is_running = False
            self.logger.info("Scheduler stopped")

    def next_run_time(self, job_id: str) -> Optional[str]:
        if not self.is_running:
            return None
        job = self.scheduler.get_job(job_id)
        if job and job.next_run_time:
            return job.next_run_time.isoformat()
        return None

    def get_status(self) -> Dict[str, Any]:
        return {
            'scheduler_running': self.is_running,
            'jobs': {
                job_id: self.next_run_time(job_id)
                for job_id in (TREND_JOB_ID, SPIKE_JOB_ID, SIMILARITY_JOB_ID, TRAINING_JOB_ID)
            },
            'trends': self.trend_analyzer.status(),
            'similarity': self.similarity_engine.matrix_guard.status(),
            'training': self.training_guard.status(),
        }
