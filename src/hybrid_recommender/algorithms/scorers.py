"""
Scorer variants
Each signal source is wrapped behind the same score/explain interface and
tagged with a ScorerKind so callers dispatch on the tag
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from hybrid_recommender.algorithms.collaborative_filtering import SimilarityEngine, SimilarityMethod
from hybrid_recommender.algorithms.content_based_filtering import ContentProfiler
from hybrid_recommender.algorithms.matrix_factorization import MatrixFactorizationSGD
from hybrid_recommender.algorithms.neural import NeuralRecommendationModel
from hybrid_recommender.algorithms.popularity_based import PopularityRanker
from hybrid_recommender.algorithms.trending_seasonal import TrendAnalyzer
from hybrid_recommender.models.interaction import MAX_RATING, Interaction
from hybrid_recommender.models.item import Item, UserPreferences
from hybrid_recommender.models.profile import UserActivity, UserProfile
from hybrid_recommender.models.recommendation import ScoredItem, ScorerKind


@dataclass
class UserContext:
    """Everything scorers know about the requesting user"""
    user_id: str
    profile: UserProfile
    activity: UserActivity
    interactions: List[Interaction] = field(default_factory=list)
    preferences: Optional[UserPreferences] = None

    @property
    def is_cold_start(self) -> bool:
        return self.activity.interaction_count == 0


@dataclass
class ScoringContext:
    limit: int = 10
    exclude_ids: Set[str] = field(default_factory=set)
    category: Optional[str] = None
    request_context: Dict[str, Any] = field(default_factory=dict)
    now: datetime = field(default_factory=datetime.now)


class Scorer(ABC):
    """Common interface of every signal source"""

    kind: ScorerKind

    @abstractmethod
    def score(self, user: UserContext, candidates: List[Item],
              context: ScoringContext) -> List[ScoredItem]:
        """Score candidates for the user, never returning excluded ids"""

    def explain(self, scored: ScoredItem) -> str:
        return scored.explanation or "Recommended for you"


def _candidate_filter(candidates: List[Item], context: ScoringContext) -> Dict[str, Item]:
    return {
        item.item_id: item for item in candidates
        if item.is_available and item.item_id not in context.exclude_ids
        and (context.category is None or item.category == context.category)
    }


class CollaborativeScorer(Scorer):
    kind = ScorerKind.COLLABORATIVE

    def __init__(self, engine: SimilarityEngine,
                 method: SimilarityMethod = SimilarityMethod.COSINE,
                 factorization: Optional[MatrixFactorizationSGD] = None):
        self.engine = engine
        self.method = SimilarityMethod(method)
        self.factorization = factorization

    def score(self, user: UserContext, candidates: List[Item],
              context: ScoringContext) -> List[ScoredItem]:
        allowed = _candidate_filter(candidates, context)
        raw = self.engine.generate_recommendations(
            user.user_id, method=self.method, limit=None,
            exclude_ids=context.exclude_ids, now=context.now,
        )
        if self.factorization is not None and self.factorization.is_trained:
            seen = {r.item_id for r in raw}
            raw.extend(r for r in self.factorization.recommend(
                user.user_id, exclude_ids=context.exclude_ids, limit=len(allowed))
                if r.item_id not in seen)

        results = []
        for scored in raw:
            if scored.item_id not in allowed:
                continue
            normalized = scored.score / MAX_RATING
            components = dict(scored.components)
            components['collaborative'] = normalized
            results.append(ScoredItem(
                item_id=scored.item_id,
                score=normalized,
                confidence=scored.confidence,
                source=self.kind,
                explanation=scored.explanation,
                components=components,
            ))
        results.sort(key=lambda r: (-r.score, r.item_id))
        return results[:context.limit]

    def explain(self, scored: ScoredItem) -> str:
        return scored.explanation or "Users with similar taste liked this"


class ContentBasedScorer(Scorer):
    kind = ScorerKind.CONTENT_BASED

    def __init__(self, profiler: ContentProfiler):
        self.profiler = profiler

    def score(self, user: UserContext, candidates: List[Item],
              context: ScoringContext) -> List[ScoredItem]:
        allowed = _candidate_filter(candidates, context)
        return self.profiler.recommend(
            user.profile, list(allowed.values()), user.preferences,
            exclude_ids=context.exclude_ids, limit=context.limit,
        )

    def explain(self, scored: ScoredItem) -> str:
        return scored.explanation or "Matches your food preferences"


class TrendingScorer(Scorer):
    """Daily trends blended with seasonal favourites for the current meal period"""

    kind = ScorerKind.TRENDING

    def __init__(self, analyzer: TrendAnalyzer, include_seasonal: bool = True):
        self.analyzer = analyzer
        self.include_seasonal = include_seasonal

    def score(self, user: UserContext, candidates: List[Item],
              context: ScoringContext) -> List[ScoredItem]:
        allowed = _candidate_filter(candidates, context)
        fetch = max(context.limit, len(allowed))
        merged: Dict[str, ScoredItem] = {}

        signals = self.analyzer.get_trending(limit=fetch, exclude_ids=context.exclude_ids)
        if self.include_seasonal:
            signals = signals + self.analyzer.get_seasonal(
                limit=fetch, exclude_ids=context.exclude_ids, now=context.now)

        for scored in signals:
            if scored.item_id not in allowed:
                continue
            current = merged.get(scored.item_id)
            if current is None or scored.score > current.score:
                merged[scored.item_id] = scored

        results = sorted(merged.values(), key=lambda r: (-r.score, r.item_id))
        return results[:context.limit]


class PopularityScorer(Scorer):
    kind = ScorerKind.POPULARITY

    def __init__(self, ranker: PopularityRanker):
        self.ranker = ranker

    def score(self, user: UserContext, candidates: List[Item],
              context: ScoringContext) -> List[ScoredItem]:
        return self.ranker.recommend(
            candidates, exclude_ids=context.exclude_ids,
            limit=context.limit, category=context.category,
        )


class NeuralScorer(Scorer):
    kind = ScorerKind.NEURAL

    def __init__(self, model: NeuralRecommendationModel, min_score: float = 0.1,
                 confidence: float = 0.7):
        self.model = model
        self.min_score = min_score
        self.confidence = confidence

    def score(self, user: UserContext, candidates: List[Item],
              context: ScoringContext) -> List[ScoredItem]:
        pool = list(_candidate_filter(candidates, context).values())
        predictions = self.model.predict(user.profile, pool)

        results = [
            ScoredItem(
                item_id=item.item_id,
                score=float(prediction),
                confidence=self.confidence,
                source=self.kind,
                explanation="Predicted to suit your taste based on your order patterns",
                components={'neural': float(prediction)},
            )
            for item, prediction in zip(pool, predictions)
            if prediction >= self.min_score
        ]
        results.sort(key=lambda r: (-r.score, r.item_id))
        return results[:context.limit]
