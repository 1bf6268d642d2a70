"""
Unit tests for the batch job scheduler
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.services.batch_jobs import JobRun
from hybrid_recommender.services.scheduler import (
    SIMILARITY_JOB_ID, SPIKE_JOB_ID, TRAINING_JOB_ID, TREND_JOB_ID, SchedulerService
)

NOW = datetime(2024, 6, 1, 3, 0)


class TestSchedulerService:
    """Test cases for job registration and job bodies"""

    def setup_method(self):
        self.trends = Mock()
        self.similarity = Mock()
        self.store = Mock()
        self.catalog = Mock()
        self.neural = Mock()
        self.factorization = Mock()
        self.backend = Mock()
        self.service = SchedulerService(
            trend_analyzer=self.trends,
            similarity_engine=self.similarity,
            interaction_store=self.store,
            catalog=self.catalog,
            neural_model=self.neural,
            factorization=self.factorization,
            scheduler=self.backend,
            clock=lambda: NOW,
        )

    def test_start_registers_jobs(self):
        self.service.start()
        job_ids = [call.kwargs['id'] for call in self.backend.add_job.call_args_list]

        assert job_ids == [TREND_JOB_ID, SPIKE_JOB_ID, SIMILARITY_JOB_ID, TRAINING_JOB_ID]
        assert all(call.kwargs['max_instances'] == 1 for call in self.backend.add_job.call_args_list)
        self.backend.start.assert_called_once()
        assert self.service.is_running

    def test_start_twice_is_noop(self):
        self.service.start()
        self.service.start()
        self.backend.start.assert_called_once()

    def test_stop(self):
        self.service.start()
        self.service.stop()
        self.backend.shutdown.assert_called_once()
        assert not self.service.is_running

    def test_trend_job(self):
        self.trends.recompute.return_value = JobRun(ran=True)
        assert self.service.trend_job().ran
        self.trends.recompute.assert_called_once_with(NOW)

    def test_job_errors_are_contained(self):
        self.trends.recompute.side_effect = RuntimeError("db down")
        self.trends.detect_spikes.side_effect = RuntimeError("db down")
        self.catalog.available_items.side_effect = RuntimeError("db down")

        assert not self.service.trend_job().ran
        assert self.service.spike_job() == []
        assert not self.service.similarity_job().ran

    def test_similarity_job(self):
        self.catalog.available_items.return_value = ['item']
        self.similarity.refresh_similarity_matrix.return_value = JobRun(ran=True)

        assert self.service.similarity_job().ran
        self.similarity.refresh_similarity_matrix.assert_called_once_with(['item'], NOW)

    def test_training_job(self):
        self.store.between.return_value = ['i1', 'i2']
        self.factorization.is_trained = True
        self.neural.train.return_value = JobRun(ran=True, result=True)

        run = self.service.train_models_job()

        assert run.ran
        assert run.result == {'interactions': 2, 'matrix_factorization': 'success', 'neural': 'success'}
        self.factorization.fit.assert_called_once_with(['i1', 'i2'])

    def test_training_failure_reported(self):
        self.store.between.return_value = []
        self.factorization.fit.side_effect = ValueError("bad data")
        self.neural.train.return_value = JobRun(ran=False)

        run = self.service.train_models_job()

        assert run.result['matrix_factorization'] == 'error'
        assert run.result['neural'] == 'already_running'

    def test_status(self):
        self.trends.status.return_value = {'job': 'trend_recompute'}
        self.similarity.matrix_guard.status.return_value = {'job': 'similarity_refresh'}
        status = self.service.get_status()

        assert status['scheduler_running'] is False
        assert status['jobs'][TREND_JOB_ID] is None
        assert status['training']['job'] == TRAINING_JOB_ID
