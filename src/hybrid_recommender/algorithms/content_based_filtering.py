"""
Content-Based Filtering
Scores items against a user's preference profile using item attributes,
explicit preferences and TF-IDF text similarity
"""
import re
from typing import Dict, Iterable, List, Optional

import numpy as np
import structlog
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS, TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from hybrid_recommender.algorithms.user_profile import UserProfileBuilder
from hybrid_recommender.models.interaction import Interaction
from hybrid_recommender.models.item import Item, UserPreferences
from hybrid_recommender.models.profile import UserProfile
from hybrid_recommender.models.recommendation import ScoredItem, ScorerKind
from hybrid_recommender.services.cache import Cache, InMemoryCache
from hybrid_recommender.services.data_store import ItemCatalog

logger = structlog.get_logger(__name__)

DEFAULT_SCORE_WEIGHTS = {
    'category': 3.0,
    'cuisine': 3.0,
    'features': 2.0,
    'price': 1.0,
    'spice': 1.0,
    'dietary': 2.0,
    'preferences': 2.0,
    'popularity': 1.0,
}

_NON_LETTERS = re.compile(r"[^a-z\s]")


class TextSimilarity:
    """TF-IDF cosine similarity over normalised item text"""

    def __init__(self, min_token_length: int = 3):
        self.min_token_length = min_token_length

    def preprocess(self, text: str) -> str:
        """Lower-case, strip punctuation and digits, drop function words"""
        cleaned = _NON_LETTERS.sub(" ", (text or "").lower())
        tokens = [
            token for token in cleaned.split()
            if len(token) >= self.min_token_length and token not in ENGLISH_STOP_WORDS
        ]
        return " ".join(tokens)

    def similarities(self, query: str, documents: List[str]) -> np.ndarray:
        """Cosine similarity of the query against each document, in [0, 1]"""
        if not documents:
            return np.zeros(0)
        processed_query = self.preprocess(query)
        if not processed_query:
            return np.zeros(len(documents))

        vectorizer = TfidfVectorizer()
        try:
            matrix = vectorizer.fit_transform([processed_query] + [self.preprocess(d) for d in documents])
        except ValueError:
            # empty vocabulary after preprocessing
            return np.zeros(len(documents))
        return np.clip(cosine_similarity(matrix[0], matrix[1:]).ravel(), 0.0, 1.0)

    def similarity(self, text_a: str, text_b: str) -> float:
        return float(self.similarities(text_a, [text_b])[0])


class ContentProfiler:
    """Content-based recommendations from a weighted preference profile"""

    def __init__(self, catalog: ItemCatalog,
                 cache: Optional[Cache] = None,
                 min_score: float = 0.1,
                 include_text_similarity: bool = True,
                 text_weight: float = 0.3,
                 score_weights: Optional[Dict[str, float]] = None,
                 profile_cache_ttl: int = 1800):
        self.catalog = catalog
        self.cache = cache or InMemoryCache()
        self.profile_builder = UserProfileBuilder(catalog)
        self.text_similarity = TextSimilarity()
        self.min_score = min_score
        self.include_text_similarity = include_text_similarity
        self.text_weight = text_weight
        self.score_weights = dict(DEFAULT_SCORE_WEIGHTS)
        self.score_weights.update(score_weights or {})
        self.profile_cache_ttl = profile_cache_ttl

    def build_profile(self, user_id: str, interactions: Iterable[Interaction]) -> UserProfile:
        cache_key = f"user_profile:{user_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached
        profile = self.profile_builder.build_profile(user_id, interactions)
        self.cache.set(cache_key, profile, self.profile_cache_ttl)
        return profile

    def invalidate_profile(self, user_id: str) -> None:
        self.cache.delete(f"user_profile:{user_id}")

    def score_components(self, item: Item, profile: UserProfile,
                         preferences: Optional[UserPreferences] = None) -> Dict[str, float]:
        """Per-signal similarity of an item to the profile, each in [0, 1]"""
        preferences = preferences or UserPreferences(user_id=profile.user_id)
        components = {
            'category': profile.category_weights.get(item.category, 0.0),
            'cuisine': profile.cuisine_weights.get(item.cuisine_type, 0.0) if item.cuisine_type else 0.0,
            'features': 0.0,
            'price': 0.0,
            'spice': max(0.0, 1 - abs(item.spice_level - profile.avg_spice_level) / 5),
            'dietary': min(1.0, sum(profile.dietary_tag_weights.get(t.lower(), 0.0)
                                    for t in item.dietary_tags)),
            'preferences': item.matches_preferences(preferences),
            'popularity': item.popularity_score * 0.5 + (item.rating_average / 5) * 0.5,
        }

        item_vector = item.content_vector()
        norms = np.linalg.norm(profile.feature_vector) * np.linalg.norm(item_vector)
        if norms > 0:
            components['features'] = max(0.0, float(profile.feature_vector @ item_vector / norms))

        if profile.avg_price > 0:
            components['price'] = max(0.0, 1 - abs(item.price - profile.avg_price) / profile.avg_price)

        return components

    def score_item(self, item: Item, profile: UserProfile,
                   preferences: Optional[UserPreferences] = None) -> float:
        """
        Weighted content match of an item to a profile

        Returns:
            Score in [0, 1]
        """
        components = self.score_components(item, profile, preferences)
        numerator = sum(components[name] * weight for name, weight in self.score_weights.items())
        denominator = sum(self.score_weights.values())
        if denominator <= 0:
            return 0.0
        return max(0.0, min(1.0, numerator / denominator))

    def confidence(self, item: Item, preferences: UserPreferences) -> float:
        confidence = 0.0
        factors = 0
        if item.rating_count > 0:
            confidence += min(1.0, item.rating_count / 50)
            factors += 1
        confidence += item.availability_score
        factors += 1
        confidence += item.matches_preferences(preferences)
        factors += 1
        return confidence / factors

    def explain(self, item: Item, preferences: UserPreferences) -> str:
        reasons = []
        if item.cuisine_type and preferences.cuisine_preferences.get(item.cuisine_type, 0) > 0.3:
            reasons.append(f"you enjoy {item.cuisine_type} cuisine")
        if item.category in preferences.favorite_categories:
            reasons.append(f"you like {item.category}")
        if abs(item.spice_level - preferences.spice_level) <= 1:
            reasons.append("it matches your spice preference")
        if item.rating_average >= 4.0:
            reasons.append(f"it's highly rated ({item.rating_average}/5)")

        if not reasons:
            return "Based on your food preferences and browsing history"
        return "Recommended because " + ", ".join(reasons[:3])

    def recommend(self, profile: UserProfile, candidates: List[Item],
                  preferences: Optional[UserPreferences] = None,
                  exclude_ids: Iterable[str] = (),
                  limit: int = 10,
                  min_score: Optional[float] = None) -> List[ScoredItem]:
        """
        Score candidate items against the profile

        Args:
            profile: User's content profile
            candidates: Items to score
            preferences: Explicit preferences, defaults when omitted
            exclude_ids: Items never returned
            limit: Maximum results
            min_score: Items scoring below this are dropped

        Returns:
            ScoredItems sorted by score descending
        """
        preferences = preferences or UserPreferences(user_id=profile.user_id)
        threshold = self.min_score if min_score is None else min_score
        excluded = set(exclude_ids)
        pool = [item for item in candidates if item.is_available and item.item_id not in excluded]
        if not pool:
            return []

        text_scores = np.zeros(len(pool))
        use_text = self.include_text_similarity and bool(profile.text_corpus)
        if use_text:
            text_scores = self.text_similarity.similarities(profile.text_corpus, [i.text for i in pool])

        results = []
        for item, text_score in zip(pool, text_scores):
            content_score = self.score_item(item, profile, preferences)
            score = content_score
            if use_text:
                score = content_score * (1 - self.text_weight) + float(text_score) * self.text_weight
            if score < threshold:
                continue
            results.append(ScoredItem(
                item_id=item.item_id,
                score=score,
                confidence=self.confidence(item, preferences),
                source=ScorerKind.CONTENT_BASED,
                explanation=self.explain(item, preferences),
                components={'content': content_score, 'text': float(text_score)},
            ))

        results.sort(key=lambda r: (-r.score, r.item_id))
        logger.debug("Content scores computed", user_id=profile.user_id,
                     candidates=len(pool), kept=len(results))
        return results[:limit]
