"""
Integration tests for the recommendation orchestrator
Tests algorithm resolution, cold-start routing, fallback and experiment exposure
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.exceptions import ExperimentNotFoundError, InvalidInteractionError
from hybrid_recommender.metrics import ServiceMetrics
from hybrid_recommender.models.interaction import Interaction, InteractionType
from hybrid_recommender.models.item import Item
from hybrid_recommender.models.recommendation import Algorithm, ScoredItem, ScorerKind
from hybrid_recommender.recommendation_service import (
    FALLBACK_ALGORITHM, build_recommendation_service
)
from hybrid_recommender.services.cache import InMemoryCache
from hybrid_recommender.services.data_store import InMemoryInteractionStore, InMemoryItemCatalog

NOW = datetime(2024, 6, 1, 13, 0)
CATEGORIES = ['main-course', 'dessert', 'beverage', 'snack']


def build_catalog():
    items = [
        Item(f'item{i}', f'Dish {i}', CATEGORIES[i % 4], 200 + i * 50,
             cuisine_type='pakistani' if i % 2 else 'continental',
             spice_level=i % 5, popularity_score=1 - i / 15, rating_average=4.0,
             rating_count=20)
        for i in range(12)
    ]
    items.append(Item('low_stock', 'Low Stock Special', 'main-course', 500,
                      popularity_score=1.0, rating_average=5.0, availability_score=0.3))
    return InMemoryItemCatalog(items)


def history(user_id, count):
    return [
        Interaction(user_id, f'item{k}', InteractionType.ORDER, timestamp=NOW - timedelta(days=k + 1))
        for k in range(count)
    ]


class TestRecommendationOrchestrator:

    def setup_method(self):
        self.catalog = build_catalog()
        self.store = InMemoryInteractionStore(history('regular', 8) + history('newbie', 2))
        self.metrics = ServiceMetrics()
        self.service = build_recommendation_service(
            self.catalog, self.store, cache=InMemoryCache(), metrics=self.metrics, clock=lambda: NOW)

    def test_default_algorithm(self):
        response = self.service.get_recommendations('newbie')

        assert response.algorithm_used == Algorithm.HYBRID_ADAPTIVE.value
        assert not response.is_fallback
        assert response.experiment_info is None
        assert 0 < response.total_generated <= 10
        assert response.total_generated == len(response.recommendations)

    def test_ranking_invariants(self):
        response = self.service.get_recommendations('regular', {'limit': 3, 'algorithm': 'popularity'})
        item_ids = [r.item_id for r in response.recommendations]
        scores = [r.score for r in response.recommendations]

        assert len(item_ids) == 3
        assert len(set(item_ids)) == 3
        assert all(a > b for a, b in zip(scores, scores[1:]))
        assert 'low_stock' not in item_ids
        assert not {f'item{k}' for k in range(8)} & set(item_ids)

    def test_explicit_exclusions_and_category(self):
        response = self.service.get_recommendations('newbie', {
            'algorithm': 'popularity', 'category': 'dessert', 'exclude_items': ['item5'],
        })
        item_ids = [r.item_id for r in response.recommendations]

        assert item_ids
        assert 'item5' not in item_ids
        assert all(self.catalog.get_item(i).category == 'dessert' for i in item_ids)

    def test_cold_start_never_calls_collaborative(self):
        collaborative = Mock()
        collaborative.kind = ScorerKind.COLLABORATIVE
        self.service.scorers[ScorerKind.COLLABORATIVE] = collaborative

        response = self.service.get_recommendations('newbie', {'algorithm': 'collaborative'})

        collaborative.score.assert_not_called()
        assert response.algorithm_used == Algorithm.HYBRID_ADAPTIVE.value
        assert response.recommendations

    def test_first_visit_of_new_user_stays_cold_start(self):
        collaborative = Mock()
        collaborative.kind = ScorerKind.COLLABORATIVE
        self.service.scorers[ScorerKind.COLLABORATIVE] = collaborative

        response = self.service.get_recommendations('brand_new', {'context': {'is_first_visit': True}})

        collaborative.score.assert_not_called()
        assert response.algorithm_used == Algorithm.HYBRID_ADAPTIVE.value
        assert not response.is_fallback

    def test_budget_context(self):
        response = self.service.get_recommendations('newbie', {'context': {'budget': 500.0}})

        assert response.algorithm_used == Algorithm.HYBRID_ADAPTIVE.value
        assert not response.is_fallback
        assert response.recommendations

    def test_collaborative_for_established_user(self):
        collaborative = Mock()
        collaborative.kind = ScorerKind.COLLABORATIVE
        collaborative.score.return_value = [
            ScoredItem('item9', 0.9, 0.8, ScorerKind.COLLABORATIVE, explanation='Similar users liked it'),
        ]
        self.service.scorers[ScorerKind.COLLABORATIVE] = collaborative

        response = self.service.get_recommendations('regular', {'algorithm': 'collaborative'})

        collaborative.score.assert_called_once()
        assert response.algorithm_used == 'collaborative'
        assert [r.item_id for r in response.recommendations] == ['item9']

    def test_scorer_failure_falls_back_to_popularity(self):
        broken = Mock()
        broken.kind = ScorerKind.CONTENT_BASED
        broken.score.side_effect = RuntimeError("scorer crashed")
        self.service.scorers[ScorerKind.CONTENT_BASED] = broken

        response = self.service.get_recommendations('newbie', {'algorithm': 'content_based', 'limit': 4})
        scores = [r.score for r in response.recommendations]

        assert response.is_fallback
        assert response.algorithm_used == FALLBACK_ALGORITHM
        assert len(response.recommendations) == 4
        assert all(r.is_fallback for r in response.recommendations)
        assert all(a > b for a, b in zip(scores, scores[1:]))
        assert self.metrics.registry.get_sample_value(
            'recommendation_fallbacks_total', {'algorithm': 'content_based'}) == 1.0

    def test_experiment_assignment_used(self):
        experiment_id = self.service.create_experiment({
            'name': 'popularity-vs-weighted',
            'control_algorithm': 'popularity',
            'treatment_algorithm': 'hybrid_weighted',
        })
        response = self.service.get_recommendations('newbie')
        info = response.experiment_info

        assert info.experiment_id == experiment_id
        expected = 'hybrid_weighted' if info.variant == 'treatment' else 'popularity'
        assert info.algorithm == expected
        assert response.algorithm_used == expected

    def test_override_beats_experiment(self):
        self.service.create_experiment({
            'name': 'popularity-vs-weighted',
            'control_algorithm': 'popularity',
            'treatment_algorithm': 'hybrid_weighted',
        })
        response = self.service.get_recommendations('newbie', {'algorithm': 'trending'})

        assert response.algorithm_used == 'trending'
        assert response.experiment_info is None

    def test_exposure_attributes_interactions(self):
        experiment_id = self.service.create_experiment({
            'name': 'popularity-vs-weighted',
            'control_algorithm': 'popularity',
            'treatment_algorithm': 'hybrid_weighted',
        })
        response = self.service.get_recommendations('newbie')
        shown = response.recommendations[0].item_id

        ack = self.service.track_interaction('newbie', shown, 'click')
        unrelated = self.service.track_interaction('newbie', 'item0', 'view')

        assert ack['experiments'] == [experiment_id]
        assert unrelated['experiments'] == []

        results = self.service.get_experiment_results(experiment_id)
        variant = results.treatment if response.experiment_info.variant == 'treatment' else results.control
        assert variant.impressions == 1
        assert variant.clicks == 1

    def test_track_interaction(self):
        ack = self.service.track_interaction('newbie', 'item3', InteractionType.RATE, value=4.5)

        assert ack['status'] == 'recorded'
        assert ack['implicit_rating'] == 4.5
        assert len(self.store.for_user('newbie')) == 3
        assert self.metrics.registry.get_sample_value(
            'interactions_tracked_total', {'interaction_type': 'rate'}) == 1.0

    def test_track_interaction_refreshes_profile(self):
        self.service.get_recommendations('newbie')
        self.service.track_interaction('newbie', 'item7', 'order')

        profile = self.service.profiler.build_profile('newbie', self.store.for_user('newbie'))
        assert 'item7' in profile.interacted_items

    @pytest.mark.parametrize('kwargs', [
        {'interaction_type': 'teleport'},
        {'interaction_type': 'rate'},
        {'interaction_type': 'rate', 'value': 7},
    ])
    def test_invalid_interactions(self, kwargs):
        with pytest.raises(InvalidInteractionError):
            self.service.track_interaction('newbie', 'item1', **kwargs)
        assert len(self.store.for_user('newbie')) == 2

    def test_cart_alias_accepted(self):
        ack = self.service.track_interaction('newbie', 'item4', 'cart')

        assert ack['interaction_type'] == InteractionType.ADD_TO_CART.value
        assert len(self.store.for_user('newbie')) == 3

    def test_unknown_experiment_leaves_store_untouched(self):
        with pytest.raises(ExperimentNotFoundError):
            self.service.track_interaction('newbie', 'item1', 'click',
                                           context={'experiment_id': 'missing'})
        assert len(self.store.for_user('newbie')) == 2

    def test_stop_experiment(self):
        experiment_id = self.service.create_experiment({
            'name': 'popularity-vs-weighted',
            'control_algorithm': 'popularity',
            'treatment_algorithm': 'hybrid_weighted',
        })
        self.service.stop_experiment(experiment_id)

        assert self.service.get_recommendations('newbie').experiment_info is None

    def test_service_status(self):
        status = self.service.get_service_status()

        assert status['default_algorithm'] == 'hybrid_adaptive'
        assert 'collaborative' in status['scorers']
        assert status['active_experiments'] == 0
        assert status['neural_model']['trained'] is False
        assert status['trends']['job'] == 'trend_recompute'
