"""
Unit tests for interaction, item and recommendation models
"""

import pytest
from datetime import datetime
from pydantic import ValidationError

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from hybrid_recommender.models.interaction import Interaction, InteractionType
from hybrid_recommender.models.item import Item, UserPreferences, FEATURE_VECTOR_SIZE, price_bucket
from hybrid_recommender.models.recommendation import (
    Algorithm, HybridStrategy, Recommendation, RecommendationOptions, ScoredItem, ScorerKind
)


class TestImplicitRating:
    """Test cases for implicit rating derivation"""

    def test_interaction_weights(self):
        """Each interaction type maps to its weight"""
        expected = {
            InteractionType.VIEW: 1.0,
            InteractionType.CLICK: 2.0,
            InteractionType.ADD_TO_CART: 3.0,
            InteractionType.ORDER: 5.0,
            InteractionType.FAVORITE: 4.0,
            InteractionType.SHARE: 3.0,
        }
        for interaction_type, rating in expected.items():
            interaction = Interaction('u1', 'i1', interaction_type)
            assert interaction.implicit_rating == rating

    def test_cart_alias(self):
        assert InteractionType('cart') == InteractionType.ADD_TO_CART
        assert InteractionType('CART') == InteractionType.ADD_TO_CART
        with pytest.raises(ValueError):
            InteractionType('basket')

    def test_explicit_rating_uses_value(self):
        interaction = Interaction('u1', 'i1', InteractionType.RATE, value=3.5)
        assert interaction.implicit_rating == 3.5

    def test_duration_bonus_capped(self):
        """Dwell time adds at most two points to views"""
        short = Interaction('u1', 'i1', InteractionType.VIEW, duration_seconds=30)
        long = Interaction('u1', 'i1', InteractionType.VIEW, duration_seconds=600)

        assert short.implicit_rating == 2.0
        assert long.implicit_rating == 3.0

    def test_rating_clamped_to_scale(self):
        click = Interaction('u1', 'i1', InteractionType.CLICK, duration_seconds=900)
        negative = Interaction('u1', 'i1', InteractionType.RATE, value=-2)

        assert click.implicit_rating == 4.0
        assert negative.implicit_rating == 0.0

    def test_order_ignores_duration(self):
        interaction = Interaction('u1', 'i1', InteractionType.ORDER, duration_seconds=120)
        assert interaction.implicit_rating == 5.0


class TestItem:
    """Test cases for item attributes"""

    def setup_method(self):
        self.item = Item(
            item_id='biryani',
            name='Chicken Biryani',
            category='main-course',
            price=450,
            cuisine_type='pakistani',
            spice_level=4,
            dietary_tags=['high-protein'],
            allergens=['dairy'],
        )

    def test_availability_clamped(self):
        item = Item('x', 'X', 'snack', 100, availability_score=1.7)
        assert item.availability_score == 1.0
        assert not Item('y', 'Y', 'snack', 100, availability_score=-1).is_available

    def test_feature_vector_size(self):
        assert len(self.item.content_vector()) == FEATURE_VECTOR_SIZE

    def test_custom_feature_vector(self):
        item = Item('x', 'X', 'snack', 100, features_vector=[0.5] * FEATURE_VECTOR_SIZE)
        assert item.content_vector().shape == (FEATURE_VECTOR_SIZE,)

        with pytest.raises(ValueError):
            Item('y', 'Y', 'snack', 100, features_vector=[0.5, 0.5, 0.5])

    def test_price_buckets(self):
        assert price_bucket(100) == 0.2
        assert price_bucket(450) == 0.5
        assert price_bucket(700) == 0.7
        assert price_bucket(1500) == 1.0

    def test_matches_preferences_in_unit_interval(self):
        fan = UserPreferences(
            cuisine_preferences={'pakistani': 1.0},
            spice_level=4,
            favorite_categories=['main-course'],
        )
        critic = UserPreferences(
            dietary_restrictions=['dairy'],
            spice_level=0,
            price_sensitivity=1.0,
            disliked_categories=['main-course'],
        )

        fan_score = self.item.matches_preferences(fan)
        critic_score = self.item.matches_preferences(critic)

        assert 0.0 <= critic_score < fan_score <= 1.0
        assert critic_score == 0.0

    def test_restriction_requires_tag(self):
        """A restriction the item is not tagged for counts as a violation"""
        prefs = UserPreferences(dietary_restrictions=['vegan'], spice_level=4)
        tagged = Item('v', 'Veg Bowl', 'main-course', 450, spice_level=4, dietary_tags=['vegan'])

        assert tagged.matches_preferences(prefs) > self.item.matches_preferences(prefs)


class TestAlgorithm:
    """Test cases for the closed algorithm set"""

    def test_aliases(self):
        assert Algorithm('hybrid') == Algorithm.HYBRID_ADAPTIVE
        assert Algorithm('adaptive_hybrid') == Algorithm.HYBRID_ADAPTIVE
        assert Algorithm('content') == Algorithm.CONTENT_BASED

    def test_unknown_algorithm_rejected(self):
        with pytest.raises(ValueError):
            Algorithm('deep_magic')

    def test_scorer_and_strategy_mapping(self):
        assert Algorithm.TRENDING.scorer_kind == ScorerKind.TRENDING
        assert Algorithm.TRENDING.hybrid_strategy is None
        assert Algorithm.HYBRID_CASCADE.is_hybrid
        assert Algorithm.HYBRID_CASCADE.hybrid_strategy == HybridStrategy.CASCADE
        assert Algorithm.HYBRID_CASCADE.scorer_kind is None


class TestRecommendationModels:
    """Test cases for recommendation request and result models"""

    def test_confidence_clamped(self):
        rec = Recommendation(item_id='a', score=0.5, confidence=1.4, algorithm='popularity')
        assert rec.confidence == 1.0

    def test_from_scored(self):
        scored = ScoredItem('a', 0.7, 0.8, ScorerKind.POPULARITY, explanation='Popular')
        rec = Recommendation.from_scored(scored, 'popularity')

        assert rec.sources == ['popularity']
        assert rec.components == {'popularity': 0.7}
        assert rec.explanation == 'Popular'

    def test_options_defaults(self):
        options = RecommendationOptions()
        assert options.limit == 10
        assert options.exclude_interacted
        assert options.algorithm is None

    def test_options_validation(self):
        with pytest.raises(ValidationError):
            RecommendationOptions(limit=0)
        with pytest.raises(ValidationError):
            RecommendationOptions(limit=101)
        with pytest.raises(ValidationError):
            RecommendationOptions(diversity_factor=1.5)
        with pytest.raises(ValidationError):
            RecommendationOptions(algorithm='deep_magic')

    def test_options_accept_alias(self):
        options = RecommendationOptions(algorithm='hybrid')
        assert options.algorithm == Algorithm.HYBRID_ADAPTIVE
