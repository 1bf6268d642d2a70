"""
Unit tests for content-based filtering
Tests profile construction, text similarity and item scoring
"""

import pytest
from datetime import datetime, timedelta

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.algorithms.content_based_filtering import ContentProfiler, TextSimilarity
from hybrid_recommender.algorithms.user_profile import UserProfileBuilder, time_slot
from hybrid_recommender.models.interaction import Interaction, InteractionType
from hybrid_recommender.models.item import Item, UserPreferences
from hybrid_recommender.services.data_store import InMemoryItemCatalog

NOW = datetime(2024, 6, 1, 13, 0)


def build_catalog():
    return InMemoryItemCatalog([
        Item('karahi', 'Chicken Karahi', 'main-course', 900, cuisine_type='pakistani',
             spice_level=4, description='Spicy tomato chicken curry',
             ingredients=['chicken', 'tomato', 'chili'], popularity_score=0.8, rating_average=4.5,
             rating_count=60),
        Item('nihari', 'Beef Nihari', 'main-course', 850, cuisine_type='pakistani',
             spice_level=4, description='Slow cooked spicy beef curry',
             ingredients=['beef', 'chili', 'ginger'], popularity_score=0.7, rating_average=4.6,
             rating_count=40),
        Item('cake', 'Chocolate Cake', 'dessert', 400, cuisine_type='continental',
             spice_level=0, description='Rich chocolate sponge',
             ingredients=['chocolate', 'flour', 'sugar'], popularity_score=0.6, rating_average=4.0),
        Item('salad', 'Garden Salad', 'salad', 350, cuisine_type='continental',
             description='Fresh lettuce and cucumber', dietary_tags=['vegan'],
             ingredients=['lettuce', 'cucumber'], popularity_score=0.3, rating_average=3.8),
        Item('gone', 'Seasonal Special', 'main-course', 700, availability_score=0.0),
    ])


class TestUserProfileBuilder:
    """Test cases for profile construction"""

    def setup_method(self):
        self.catalog = build_catalog()
        self.builder = UserProfileBuilder(self.catalog)
        self.history = [
            Interaction('u1', 'karahi', InteractionType.ORDER, timestamp=NOW - timedelta(days=1)),
            Interaction('u1', 'karahi', InteractionType.VIEW, timestamp=NOW - timedelta(days=2)),
            Interaction('u1', 'salad', InteractionType.VIEW, timestamp=NOW - timedelta(days=60)),
        ]

    def test_time_slots(self):
        assert time_slot(7) == 'breakfast'
        assert time_slot(12) == 'lunch'
        assert time_slot(19) == 'dinner'
        assert time_slot(23) == 'snack'

    def test_weights_normalised(self):
        profile = self.builder.build_profile('u1', self.history)

        assert profile.category_weights['main-course'] == pytest.approx(6 / 7)
        assert profile.category_weights['salad'] == pytest.approx(1 / 7)
        assert sum(profile.cuisine_weights.values()) <= 1.0 + 1e-9
        assert sum(profile.dietary_tag_weights.values()) <= 1.0 + 1e-9
        assert profile.interacted_items == {'karahi', 'salad'}
        assert profile.interaction_count == 3

    def test_empty_history(self):
        profile = self.builder.build_profile('new', [])
        assert profile.is_empty
        assert profile.category_weights == {}

    def test_rating_vector_averages(self):
        vector = UserProfileBuilder.rating_vector(self.history)
        assert vector == {'karahi': 3.0, 'salad': 1.0}

    def test_activity(self):
        activity = self.builder.analyze_activity('u1', self.history, now=NOW)

        assert activity.interaction_count == 3
        assert activity.recent_count == 2
        assert activity.unique_items == 2
        assert activity.unique_categories == 2
        assert activity.exploration_score == pytest.approx(1.0)


class TestTextSimilarity:
    """Test cases for TF-IDF text similarity"""

    def setup_method(self):
        self.text = TextSimilarity()

    def test_preprocess(self):
        assert self.text.preprocess("The SPICY, hot 2 chicken!") == "spicy hot chicken"

    def test_related_text_scores_higher(self):
        scores = self.text.similarities('spicy chicken curry',
                                        ['spicy beef curry', 'chocolate sponge cake'])
        assert scores[0] > scores[1]
        assert scores[1] == 0.0

    def test_empty_vocabulary(self):
        scores = self.text.similarities('the and of', ['it is', 'on'])
        assert list(scores) == [0.0, 0.0]


class TestContentProfiler:
    """Test cases for content scoring"""

    def setup_method(self):
        self.catalog = build_catalog()
        self.profiler = ContentProfiler(self.catalog, min_score=0.0)
        history = [
            Interaction('u1', 'karahi', InteractionType.ORDER, timestamp=NOW - timedelta(days=1)),
        ]
        self.profile = self.profiler.build_profile('u1', history)

    def test_score_in_unit_interval(self):
        for item in self.catalog.available_items():
            assert 0.0 <= self.profiler.score_item(item, self.profile) <= 1.0

    def test_similar_item_ranks_first(self):
        candidates = self.catalog.available_items()
        results = self.profiler.recommend(self.profile, candidates,
                                          exclude_ids=self.profile.interacted_items)

        assert results[0].item_id == 'nihari'
        assert 'karahi' not in [r.item_id for r in results]
        assert 'gone' not in [r.item_id for r in results]
        assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)

    def test_min_score_filters(self):
        results = self.profiler.recommend(self.profile, self.catalog.available_items(), min_score=0.99)
        assert results == []

    def test_preferences_raise_match(self):
        prefs = UserPreferences(cuisine_preferences={'continental': 1.0}, spice_level=0,
                                favorite_categories=['dessert'])
        cake = self.catalog.get_item('cake')

        assert self.profiler.score_item(cake, self.profile, prefs) > self.profiler.score_item(cake, self.profile)
        assert "continental" in self.profiler.explain(cake, prefs)

    def test_profile_cached_until_invalidated(self):
        assert self.profiler.build_profile('u1', []) is self.profile
        self.profiler.invalidate_profile('u1')
        assert self.profiler.build_profile('u1', []).is_empty
