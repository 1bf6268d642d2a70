"""
Unit tests for the SGD matrix factorization model
"""

import pytest
from datetime import datetime

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.algorithms.matrix_factorization import MatrixFactorizationSGD
from hybrid_recommender.exceptions import ModelNotTrainedError
from hybrid_recommender.models.interaction import Interaction, InteractionType


def build_interactions():
    ratings = {
        'u1': {'i1': 5, 'i2': 4, 'i3': 1},
        'u2': {'i1': 5, 'i2': 5, 'i4': 4},
        'u3': {'i3': 5, 'i4': 1, 'i5': 4},
        'u4': {'i2': 4, 'i4': 5, 'i5': 2},
    }
    return [
        Interaction(user, item, InteractionType.RATE, timestamp=datetime(2024, 5, 1), value=value)
        for user, items in ratings.items()
        for item, value in items.items()
    ]


class TestMatrixFactorizationSGD:
    """Test cases for latent factor training and prediction"""

    def setup_method(self):
        self.model = MatrixFactorizationSGD(n_factors=5, iterations=200,
                                            learning_rate=0.02, random_state=7)
        self.interactions = build_interactions()

    def test_untrained_model_raises(self):
        with pytest.raises(ModelNotTrainedError):
            self.model.predict('u1', 'i1')
        with pytest.raises(ModelNotTrainedError):
            self.model.recommend('u1')

    def test_fit_reduces_error(self):
        short = MatrixFactorizationSGD(n_factors=5, iterations=1, learning_rate=0.02, random_state=7)
        short.fit(self.interactions)
        self.model.fit(self.interactions)

        assert self.model.is_trained
        assert self.model.training_error < short.training_error

    def test_predictions_within_rating_scale(self):
        self.model.fit(self.interactions)
        for user in ('u1', 'u2', 'u3', 'u4'):
            for item in ('i1', 'i2', 'i3', 'i4', 'i5'):
                assert 0.0 <= self.model.predict(user, item) <= 5.0

    def test_unknown_ids_predict_zero(self):
        self.model.fit(self.interactions)
        assert self.model.predict('stranger', 'i1') == 0.0
        assert self.model.recommend('stranger') == []

    def test_recommend_excludes_rated_items(self):
        self.model.fit(self.interactions)
        results = self.model.recommend('u1', exclude_ids={'i5'})
        item_ids = [r.item_id for r in results]

        assert not {'i1', 'i2', 'i3', 'i5'} & set(item_ids)
        assert all(r.confidence == 0.8 for r in results)

    def test_empty_history_leaves_model_untrained(self):
        self.model.fit([])
        assert not self.model.is_trained

    def test_save_and_load(self, tmp_path):
        self.model.fit(self.interactions)
        path = tmp_path / 'mf.joblib'
        self.model.save_model(str(path))

        restored = MatrixFactorizationSGD()
        restored.load_model(str(path))

        assert restored.is_trained
        assert restored.n_factors == 5
        assert restored.predict('u2', 'i3') == pytest.approx(self.model.predict('u2', 'i3'))
