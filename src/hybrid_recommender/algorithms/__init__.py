"""
Recommendation algorithms package
"""

from .collaborative_filtering import SimilarityEngine, SimilarityMethod
from .content_based_filtering import ContentProfiler
from .hybrid_combiner import HybridCombiner
from .matrix_factorization import MatrixFactorizationSGD
from .neural import NeuralRecommendationModel
from .popularity_based import PopularityRanker
from .trending_seasonal import TrendAnalyzer
from .user_profile import UserProfileBuilder

__all__ = [
    'SimilarityEngine',
    'SimilarityMethod',
    'ContentProfiler',
    'HybridCombiner',
    'MatrixFactorizationSGD',
    'NeuralRecommendationModel',
    'PopularityRanker',
    'TrendAnalyzer',
    'UserProfileBuilder'
]
