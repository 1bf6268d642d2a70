"""
Unit tests for collaborative filtering
Tests similarity measures, neighbour scoring and the batch refresh guard
"""

import pytest
import threading
from datetime import datetime, timedelta
from unittest.mock import Mock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.algorithms.collaborative_filtering import (
    Neighbor, SimilarityEngine, SimilarityMethod
)
from hybrid_recommender.models.interaction import Interaction, InteractionType
from hybrid_recommender.models.item import Item
from hybrid_recommender.services.data_store import InMemoryInteractionStore

NOW = datetime(2024, 6, 1, 12, 0)


def rate(user_id, item_id, value, days_ago=1):
    return Interaction(user_id, item_id, InteractionType.RATE,
                       timestamp=NOW - timedelta(days=days_ago), value=value)


class TestSimilarity:
    """Test cases for user-user similarity"""

    def setup_method(self):
        self.engine = SimilarityEngine(min_common_items=3)
        self.user_a = {'a': 5.0, 'b': 3.0, 'c': 4.0, 'x': 1.0}
        self.user_b = {'a': 4.0, 'b': 2.0, 'c': 5.0, 'y': 5.0}

    def test_symmetric_for_all_methods(self):
        for method in SimilarityMethod:
            forward = self.engine.similarity(self.user_a, self.user_b, method)
            backward = self.engine.similarity(self.user_b, self.user_a, method)
            assert forward == backward

    def test_cosine_identical_vectors(self):
        ratings = {'a': 5.0, 'b': 3.0, 'c': 4.0}
        assert self.engine.similarity(ratings, dict(ratings)) == pytest.approx(1.0)

    def test_pearson_opposite_vectors(self):
        up = {'a': 1.0, 'b': 2.0, 'c': 3.0}
        down = {'a': 3.0, 'b': 2.0, 'c': 1.0}
        score = self.engine.similarity(up, down, SimilarityMethod.PEARSON)
        assert score == pytest.approx(-1.0)

    def test_jaccard_overlap(self):
        score = self.engine.similarity(self.user_a, self.user_b, SimilarityMethod.JACCARD)
        assert score == pytest.approx(3 / 5)

    def test_below_min_common_items_is_zero(self):
        few_a = {'a': 5.0, 'b': 4.0}
        few_b = {'a': 5.0, 'b': 4.0, 'z': 1.0}
        for method in SimilarityMethod:
            assert self.engine.similarity(few_a, few_b, method) == 0.0

    def test_zero_variance_pearson(self):
        flat = {'a': 3.0, 'b': 3.0, 'c': 3.0}
        assert self.engine.similarity(flat, self.user_a, SimilarityMethod.PEARSON) == 0.0

    def test_find_neighbors_ordering_and_threshold(self):
        target = {'a': 5.0, 'b': 3.0, 'c': 4.0}
        pool = {
            'close': {'a': 5.0, 'b': 3.0, 'c': 4.0},
            'far': {'a': 1.0, 'b': 5.0, 'c': 1.0},
            'sparse': {'a': 5.0},
        }
        neighbors = self.engine.find_neighbors(target, pool, min_similarity=0.9)

        assert [n.user_id for n in neighbors] == ['close']

    def test_find_neighbors_respects_max(self):
        target = {'a': 5.0, 'b': 3.0, 'c': 4.0}
        pool = {f'user{i}': dict(target) for i in range(10)}
        neighbors = self.engine.find_neighbors(target, pool, max_neighbors=3)
        assert len(neighbors) == 3


class TestNeighbourScoring:
    """Test cases for similarity-weighted scoring"""

    def setup_method(self):
        self.engine = SimilarityEngine(min_score=0.1)
        self.target = {'a': 5.0, 'b': 4.0}

    def test_weighted_average(self):
        neighbors = [Neighbor('n1', 0.9), Neighbor('n2', 0.3)]
        ratings = {
            'n1': {'a': 5.0, 'd': 5.0},
            'n2': {'d': 1.0, 'e': 4.0},
        }
        results = self.engine.recommend(self.target, neighbors, ratings)
        by_item = {r.item_id: r for r in results}

        assert by_item['d'].score == pytest.approx((0.9 * 5 + 0.3 * 1) / 1.2)
        assert by_item['e'].score == pytest.approx(4.0)
        assert by_item['d'].confidence == pytest.approx(0.4)
        assert "2 similar users" in by_item['d'].explanation

    def test_rated_and_excluded_items_never_returned(self):
        neighbors = [Neighbor('n1', 0.8)]
        ratings = {'n1': {'a': 5.0, 'b': 5.0, 'c': 4.0, 'd': 3.0}}
        results = self.engine.recommend(self.target, neighbors, ratings, exclude_ids={'c'})

        assert [r.item_id for r in results] == ['d']

    def test_results_sorted_and_limited(self):
        neighbors = [Neighbor('n1', 0.8)]
        ratings = {'n1': {'x': 2.0, 'y': 5.0, 'z': 3.0}}
        results = self.engine.recommend(self.target, neighbors, ratings, limit=2)

        assert [r.item_id for r in results] == ['y', 'z']


class TestSimilarityEngineWithStore:
    """Test cases that read neighbourhoods from the interaction log"""

    def setup_method(self):
        interactions = [
            rate('alice', 'a', 5), rate('alice', 'b', 4), rate('alice', 'c', 3),
            rate('bob', 'a', 5), rate('bob', 'b', 4), rate('bob', 'c', 3), rate('bob', 'd', 5),
            rate('carol', 'a', 1), rate('carol', 'e', 5),
            # outside the neighbour window
            rate('dave', 'a', 5, days_ago=200), rate('dave', 'b', 4, days_ago=200),
            rate('dave', 'c', 3, days_ago=200), rate('dave', 'f', 5, days_ago=200),
        ]
        self.store = InMemoryInteractionStore(interactions)
        self.engine = SimilarityEngine(interaction_store=self.store, min_common_items=3)

    def test_generate_recommendations(self):
        results = self.engine.generate_recommendations('alice', now=NOW)

        assert [r.item_id for r in results] == ['d']
        assert results[0].score == pytest.approx(5.0)

    def test_unknown_user_gets_nothing(self):
        assert self.engine.generate_recommendations('nobody', now=NOW) == []

    def test_neighbours_are_cached(self):
        self.engine.generate_recommendations('alice', now=NOW)
        cached = self.engine.cache.get('similar_users:alice:cosine')

        assert [n.user_id for n in cached] == ['bob']

    def test_refresh_publishes_matrix(self):
        items = [
            Item('a', 'Garden Salad', 'salad', 300, dietary_tags=['vegan']),
            Item('b', 'Vegan Bowl', 'salad', 320, dietary_tags=['vegan']),
        ]
        run = self.engine.refresh_similarity_matrix(items, now=NOW)
        snapshot = self.engine.matrix_publisher.current()

        assert run.ran
        assert snapshot.version == 1
        assert [n.user_id for n in snapshot.payload.neighbors['cosine']['alice']] == ['bob']
        assert len(snapshot.payload.item_pairs) == 1
        assert self.engine.similar_items('a')[0].id_b == 'b'

    def test_concurrent_refresh_is_skipped(self):
        """A second trigger while a refresh is running is a no-op"""
        on_skip = Mock()
        engine = SimilarityEngine(interaction_store=self.store, on_job_skipped=on_skip)
        started = threading.Event()
        release = threading.Event()

        def slow_refresh(items, now):
            started.set()
            release.wait(5)
            return 'done'

        engine._compute_similarity_matrix = slow_refresh
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.refresh_similarity_matrix(now=NOW)))
        worker.start()
        assert started.wait(5)

        second = engine.refresh_similarity_matrix(now=NOW)
        release.set()
        worker.join(5)

        assert not second.ran
        on_skip.assert_called_once_with('similarity_refresh')
        assert results[0].ran
        assert results[0].result == 'done'
