from hybrid_recommender.models.interaction import Interaction, InteractionType, implicit_rating
from hybrid_recommender.models.item import Item, UserPreferences
from hybrid_recommender.models.profile import UserActivity, UserProfile, UserSegment
from hybrid_recommender.models.recommendation import (
    Algorithm, HybridStrategy, Recommendation, RecommendationOptions,
    RecommendationResponse, ScoredItem, ScorerKind
)
